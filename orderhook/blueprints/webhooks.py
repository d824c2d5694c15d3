"""Webhooks blueprint: /api/webhooks/*

Receives Stripe and Square payment webhooks. The raw body is passed through
untouched because both signatures are computed over the exact bytes.

Route Map:
  POST /api/webhooks/stripe  Stripe events (Stripe-Signature header)
  POST /api/webhooks/square  Square events (x-square-hmacsha256-signature header)

The status code is what the provider acts on: 2xx stops redelivery, 5xx
asks for it, 4xx means the request itself is bad.
"""

import logging

from flask import Blueprint, jsonify, request

from orderhook.exceptions import WebhookError
from orderhook.models.webhook_event import PROVIDER_SQUARE, PROVIDER_STRIPE
from orderhook.services.webhook_service import handle_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")

_ERROR_MESSAGES = {
    401: "Invalid signature",
    400: "Malformed payload",
}


def _receive(provider):
    payload = request.get_data(cache=False)

    try:
        result = handle_webhook(provider, payload, request.headers)
    except WebhookError as e:
        status = e.status_code
        if status >= 500:
            logger.error(f"{provider} webhook failed: {e}")
        else:
            logger.warning(f"{provider} webhook rejected ({status}): {e}")
        # Details stay in the logs, not in the response to the provider.
        message = _ERROR_MESSAGES.get(status, "Webhook processing failed")
        return jsonify({"error": message}), status

    return jsonify(result.body), result.status_code


@webhooks_bp.route("/stripe", methods=["POST"])
def stripe_webhook():
    """Receive a Stripe event."""
    return _receive(PROVIDER_STRIPE)


@webhooks_bp.route("/square", methods=["POST"])
def square_webhook():
    """Receive a Square event."""
    return _receive(PROVIDER_SQUARE)
