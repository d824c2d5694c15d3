"""Normalizer service: provider payloads to one canonical event shape.

Every verified event becomes a NormalizedEvent whose `kind` tells the
router what to do with it:

    payment_succeeded  -> materialize an order
    payment_failed     -> pending order -> failed
    refunded           -> completed order -> refunded
    noop               -> acknowledge, mark processed, nothing else

Unrecognized event types are `noop`, never errors. Amounts are passed
through untouched (minor units, as the provider sent them); the
materializer is the one that rejects non-integer or negative amounts.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from orderhook.exceptions import MaterializationInvariantViolation
from orderhook.models.webhook_event import PROVIDER_SQUARE, PROVIDER_STRIPE

logger = logging.getLogger(__name__)

KIND_PAYMENT_SUCCEEDED = "payment_succeeded"
KIND_PAYMENT_FAILED = "payment_failed"
KIND_REFUNDED = "refunded"
KIND_NOOP = "noop"


@dataclass(frozen=True)
class NormalizedEvent:
    kind: str
    payment_id: Optional[str] = None
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: Optional[str] = None
    payment_intent_id: Optional[str] = None


NOOP = NormalizedEvent(kind=KIND_NOOP)


def _currency(value):
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip().upper()


def _text(value):
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def _mapping(value):
    """Optional nested object; anything but a dict counts as absent."""
    return value if isinstance(value, dict) else {}


def _expandable_id(value):
    """Stripe fields like payment_intent may be an id or an expanded object."""
    if isinstance(value, dict):
        return _text(value.get("id"))
    return _text(value)


# ──────────────────────────────────────────────
# Stripe
# ──────────────────────────────────────────────

def _stripe_object(payload):
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MaterializationInvariantViolation(
            f"Stripe {payload.get('type')} event has no data.object"
        )
    return obj


def _require_payment_id(payment_id, event_type):
    if not payment_id:
        raise MaterializationInvariantViolation(
            f"{event_type} event has no payment id"
        )
    return payment_id


def _stripe_payment_intent_succeeded(payload):
    intent = _stripe_object(payload)
    intent_id = _require_payment_id(_text(intent.get("id")), payload.get("type"))
    shipping = _mapping(intent.get("shipping"))

    return NormalizedEvent(
        kind=KIND_PAYMENT_SUCCEEDED,
        payment_id=intent_id,
        payment_intent_id=intent_id,
        amount_minor=intent.get("amount"),
        currency=_currency(intent.get("currency")),
        customer_email=_text(intent.get("receipt_email")),
        customer_name=_text(shipping.get("name")),
        status=_text(intent.get("status")),
    )


def _stripe_charge_succeeded(payload):
    """charge.succeeded.

    Keyed on the charge's payment intent when there is one, so the charge
    and its payment_intent.succeeded event resolve to the same order.
    """
    charge = _stripe_object(payload)
    intent_id = _expandable_id(charge.get("payment_intent"))
    payment_id = _require_payment_id(
        intent_id or _text(charge.get("id")), payload.get("type")
    )
    billing = _mapping(charge.get("billing_details"))

    return NormalizedEvent(
        kind=KIND_PAYMENT_SUCCEEDED,
        payment_id=payment_id,
        payment_intent_id=intent_id,
        amount_minor=charge.get("amount"),
        currency=_currency(charge.get("currency")),
        customer_email=_text(billing.get("email")) or _text(charge.get("receipt_email")),
        customer_name=_text(billing.get("name")),
        status=_text(charge.get("status")),
    )


def _stripe_checkout_session_completed(payload):
    """checkout.session.completed.

    Sessions paid by a delayed method complete with payment_status=unpaid;
    the money hasn't moved yet, so those are acknowledged without an order.
    """
    session = _stripe_object(payload)
    if session.get("payment_status") == "unpaid":
        logger.info(f"Checkout session {session.get('id')} completed unpaid, no order yet")
        return NOOP

    intent_id = _expandable_id(session.get("payment_intent"))
    payment_id = _require_payment_id(
        intent_id or _text(session.get("id")), payload.get("type")
    )
    details = _mapping(session.get("customer_details"))

    return NormalizedEvent(
        kind=KIND_PAYMENT_SUCCEEDED,
        payment_id=payment_id,
        payment_intent_id=intent_id,
        amount_minor=session.get("amount_total"),
        currency=_currency(session.get("currency")),
        customer_email=_text(details.get("email")) or _text(session.get("customer_email")),
        customer_name=_text(details.get("name")),
        status=_text(session.get("payment_status")),
    )


def _stripe_payment_failed(payload):
    obj = _stripe_object(payload)
    if payload.get("type") == "charge.failed":
        intent_id = _expandable_id(obj.get("payment_intent"))
        payment_id = intent_id or _text(obj.get("id"))
    else:
        intent_id = _text(obj.get("id"))
        payment_id = intent_id

    return NormalizedEvent(
        kind=KIND_PAYMENT_FAILED,
        payment_id=_require_payment_id(payment_id, payload.get("type")),
        payment_intent_id=intent_id,
        status=_text(obj.get("status")),
    )


def _stripe_charge_refunded(payload):
    charge = _stripe_object(payload)
    if charge.get("refunded") is not True:
        # Partial refund; the order stays completed.
        return NOOP

    intent_id = _expandable_id(charge.get("payment_intent"))
    return NormalizedEvent(
        kind=KIND_REFUNDED,
        payment_id=_require_payment_id(
            intent_id or _text(charge.get("id")), payload.get("type")
        ),
        payment_intent_id=intent_id,
        amount_minor=charge.get("amount_refunded"),
        currency=_currency(charge.get("currency")),
        status="refunded",
    )


_STRIPE_HANDLERS = {
    "payment_intent.succeeded": _stripe_payment_intent_succeeded,
    "charge.succeeded": _stripe_charge_succeeded,
    "checkout.session.completed": _stripe_checkout_session_completed,
    "payment_intent.payment_failed": _stripe_payment_failed,
    "charge.failed": _stripe_payment_failed,
    "charge.refunded": _stripe_charge_refunded,
}


# ──────────────────────────────────────────────
# Square
# ──────────────────────────────────────────────

def _square_data_object(payload, key):
    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    inner = obj.get(key) if isinstance(obj, dict) else None
    if not isinstance(inner, dict):
        raise MaterializationInvariantViolation(
            f"Square {payload.get('type')} event has no data.object.{key}"
        )
    return inner


def _square_payment_updated(payload):
    """payment.updated: only COMPLETED payments become orders."""
    payment = _square_data_object(payload, "payment")
    status = _text(payment.get("status"))
    payment_id = _require_payment_id(_text(payment.get("id")), payload.get("type"))

    if status == "COMPLETED":
        money = _mapping(payment.get("amount_money"))
        return NormalizedEvent(
            kind=KIND_PAYMENT_SUCCEEDED,
            payment_id=payment_id,
            amount_minor=money.get("amount"),
            currency=_currency(money.get("currency")),
            customer_email=_text(payment.get("buyer_email_address")),
            status=status,
        )

    if status in ("FAILED", "CANCELED"):
        return NormalizedEvent(
            kind=KIND_PAYMENT_FAILED,
            payment_id=payment_id,
            status=status,
        )

    logger.info(f"Square payment {payment_id} is {status}, not creating order")
    return NOOP


def _square_refund_updated(payload):
    refund = _square_data_object(payload, "refund")
    if _text(refund.get("status")) != "COMPLETED":
        return NOOP

    money = _mapping(refund.get("amount_money"))
    return NormalizedEvent(
        kind=KIND_REFUNDED,
        payment_id=_require_payment_id(_text(refund.get("payment_id")), payload.get("type")),
        amount_minor=money.get("amount"),
        currency=_currency(money.get("currency")),
        status="COMPLETED",
    )


_SQUARE_HANDLERS = {
    "payment.updated": _square_payment_updated,
    "refund.updated": _square_refund_updated,
}


_PROVIDER_HANDLERS = {
    PROVIDER_STRIPE: _STRIPE_HANDLERS,
    PROVIDER_SQUARE: _SQUARE_HANDLERS,
}


def normalize_event(provider, event_type, payload):
    """Map a verified provider payload to a NormalizedEvent.

    Raises MaterializationInvariantViolation if a recognized event is
    missing the fields needed to act on it.
    """
    handler = _PROVIDER_HANDLERS.get(provider, {}).get(event_type)
    if handler is None:
        logger.info(f"Unhandled {provider} event type {event_type}, acknowledging")
        return NOOP
    return handler(payload)
