"""Signature service: provider-specific webhook authentication.

Responsible for:
- Verifying the provider signature over the exact wire bytes, before any
  JSON parsing (re-serialising can change byte layout and break the HMAC)
- Reading the provider envelope (event id + event type) once the body is
  known to be authentic

Each provider is one verifier class; adding a provider means adding one
more class to VERIFIERS, not branching in the router.

Every verifier fails closed: a missing header, malformed header or missing
secret is an invalid signature. Verification has no side effects.
"""

import base64
import hashlib
import hmac
import json
import logging

import stripe

from orderhook.exceptions import MalformedPayload
from orderhook.models.webhook_event import PROVIDER_SQUARE, PROVIDER_STRIPE

logger = logging.getLogger(__name__)


def _load_json(raw_body):
    """Parse a verified body into a dict, or raise MalformedPayload."""
    try:
        payload = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"Body is not valid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise MalformedPayload("Body is not a JSON object")
    return payload


class WebhookVerifier:
    """Base class for one provider's signing scheme."""

    provider = None
    signature_header = None  # lowercase
    event_id_field = None

    def verify(self, raw_body, headers, config):
        """Return True if raw_body was signed by the provider.

        headers: mapping with lowercase keys.
        config:  app config mapping holding the provider secrets.
        """
        signature = headers.get(self.signature_header)
        if not signature:
            logger.warning(
                f"{self.provider} webhook received without {self.signature_header} header"
            )
            return False
        return self._check(raw_body, signature, config)

    def _check(self, raw_body, signature, config):
        raise NotImplementedError

    def parse_envelope(self, raw_body):
        """Return (event_id, event_type, payload) from an authentic body."""
        payload = _load_json(raw_body)

        event_id = payload.get(self.event_id_field)
        event_type = payload.get("type")
        if not isinstance(event_id, str) or not event_id.strip():
            raise MalformedPayload(f"Missing {self.event_id_field} in {self.provider} event")
        if not isinstance(event_type, str) or not event_type.strip():
            raise MalformedPayload(f"Missing type in {self.provider} event")

        return event_id.strip(), event_type.strip(), payload


class StripeVerifier(WebhookVerifier):
    """Stripe-Signature: t=<unix ts>,v1=<hex hmac>[,v1=<hex hmac>...]

    The HMAC-SHA256 is computed over "{t}.{body}" with the endpoint secret.
    Any matching v1 entry is accepted (Stripe sends one per active secret
    while a secret is being rolled). Timestamps older than
    STRIPE_WEBHOOK_TOLERANCE seconds are rejected.
    """

    provider = PROVIDER_STRIPE
    signature_header = "stripe-signature"
    event_id_field = "id"

    def _check(self, raw_body, signature, config):
        secret = config.get("STRIPE_WEBHOOK_SECRET")
        if not secret:
            logger.warning("STRIPE_WEBHOOK_SECRET not set, rejecting webhook")
            return False

        try:
            payload = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Stripe webhook body is not valid UTF-8")
            return False

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                signature,
                secret,
                tolerance=config.get("STRIPE_WEBHOOK_TOLERANCE", 300),
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            return False
        return True


class SquareVerifier(WebhookVerifier):
    """x-square-hmacsha256-signature: base64(HMAC-SHA256(url + body))

    The notification URL is part of the signed material, so
    SQUARE_WEBHOOK_URL has to be exactly the URL registered with Square.
    """

    provider = PROVIDER_SQUARE
    signature_header = "x-square-hmacsha256-signature"
    event_id_field = "event_id"

    def _check(self, raw_body, signature, config):
        signature_key = config.get("SQUARE_WEBHOOK_SIGNATURE_KEY")
        notification_url = config.get("SQUARE_WEBHOOK_URL")
        if not signature_key or not notification_url:
            logger.warning(
                "SQUARE_WEBHOOK_SIGNATURE_KEY or SQUARE_WEBHOOK_URL not set, rejecting webhook"
            )
            return False

        digest = hmac.new(
            signature_key.encode("utf-8"),
            notification_url.encode("utf-8") + raw_body,
            hashlib.sha256,
        ).digest()
        expected = base64.b64encode(digest)

        if not hmac.compare_digest(expected, signature.strip().encode("utf-8")):
            logger.warning("Square webhook signature verification failed")
            return False
        return True


VERIFIERS = {
    PROVIDER_STRIPE: StripeVerifier(),
    PROVIDER_SQUARE: SquareVerifier(),
}


def get_verifier(provider):
    """Look up the verifier for a provider name.

    Raises ValueError for providers we don't accept webhooks from.
    """
    verifier = VERIFIERS.get(provider)
    if verifier is None:
        raise ValueError(f"Unknown webhook provider: {provider}")
    return verifier


def verify_signature(provider, raw_body, headers, config):
    """Verify a raw webhook request for the named provider.

    Header names are matched case-insensitively. Returns True/False.
    """
    verifier = get_verifier(provider)
    lowered = {k.lower(): v for k, v in headers.items()}
    return verifier.verify(raw_body, lowered, config)
