"""Webhook service: the per-request ingestion pipeline.

    verify signature -> claim in ledger -> normalize -> materialize/transition
    -> mark processed -> commit -> post-commit side effects

The claim, the order write and the processed flag share one database
transaction, so a crash anywhere before commit rolls all of them back and
the provider's redelivery starts clean. Materialization runs inside a
SAVEPOINT: if it fails, only the order work is undone and the claimed event
is kept with its error message.

HTTP outcome per terminal state:
- signature invalid      -> 401 (SignatureInvalid, nothing stored)
- malformed envelope     -> 400 (MalformedPayload, nothing stored)
- duplicate event_id     -> 200 {"received": true, "duplicate": true}
- processed / no-op      -> 200 {"received": true}
- materialization error  -> 5xx, event kept with processed=False
"""

import logging
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from orderhook.exceptions import InvalidTransition, SignatureInvalid, StorageError
from orderhook.extensions import db
from orderhook.models.order import Order
from orderhook.services.fulfillment_service import dispatch_order_created
from orderhook.services.ledger_service import (
    claim_event,
    get_event,
    mark_failed,
    mark_processed,
)
from orderhook.services.normalizer_service import (
    KIND_PAYMENT_FAILED,
    KIND_PAYMENT_SUCCEEDED,
    KIND_REFUNDED,
    normalize_event,
)
from orderhook.services.order_service import materialize_order, transition_order_status
from orderhook.services.signature_service import get_verifier, verify_signature

logger = logging.getLogger(__name__)

_TRANSITION_TARGETS = {
    KIND_PAYMENT_FAILED: Order.STATUS_FAILED,
    KIND_REFUNDED: Order.STATUS_REFUNDED,
}


@dataclass(frozen=True)
class WebhookResult:
    status_code: int
    body: dict = field(default_factory=dict)
    outcome: str = ""


def _log_webhook(provider, event_type, event_id, status):
    """One audit line per terminal state."""
    logger.info(
        f"WEBHOOK provider={provider} event={event_type} id={event_id} status={status}"
    )


def apply_event(provider, event_type, payload, webhook_event_id):
    """Act on one claimed event. Returns (outcome, OrderRef or None).

    Runs inside the caller's transaction and doesn't commit.
    """
    normalized = normalize_event(provider, event_type, payload)

    if normalized.kind == KIND_PAYMENT_SUCCEEDED:
        order_ref = materialize_order(
            provider=provider,
            payment_id=normalized.payment_id,
            amount_minor=normalized.amount_minor,
            currency=normalized.currency,
            customer_email=normalized.customer_email,
            customer_name=normalized.customer_name,
            webhook_event_id=webhook_event_id,
            payment_intent_id=normalized.payment_intent_id,
        )
        return ("order_created" if order_ref.created else "order_exists"), order_ref

    target = _TRANSITION_TARGETS.get(normalized.kind)
    if target:
        try:
            order_ref = transition_order_status(provider, normalized.payment_id, target)
        except InvalidTransition as e:
            logger.warning(
                f"Ignoring {provider} {event_type} for payment {normalized.payment_id}: {e}"
            )
            return "transition_ignored", None
        if order_ref is None:
            # Acknowledged; a later success event for this payment still
            # creates a completed order.
            logger.warning(
                f"{provider} {event_type} for payment {normalized.payment_id} "
                f"arrived before any order; {target} not applied"
            )
            return "no_order", None
        return f"order_{target}", order_ref

    return "noop", None


def _record_failure(webhook_event_id, error):
    """Persist the error on the claimed event, keeping processed=False."""
    try:
        mark_failed(webhook_event_id, error)
        db.session.commit()
    except SQLAlchemyError:
        # The claim goes with it; a redelivery will be able to claim again.
        db.session.rollback()
        logger.error(
            f"Could not record failure for webhook event {webhook_event_id}",
            exc_info=True,
        )


def process_claimed_event(event):
    """Materialize a claimed ledger row, mark it processed and commit.

    On failure the error is recorded on the row and the exception is
    re-raised (SQLAlchemy errors as StorageError).
    """
    webhook_event_id = event.id
    provider, event_type, event_id = event.provider, event.event_type, event.event_id

    try:
        with db.session.begin_nested():
            outcome, order_ref = apply_event(
                provider, event_type, event.payload, webhook_event_id
            )
    except Exception as e:
        logger.error(
            f"Error processing {provider} {event_type} ({event_id}): {e}",
            exc_info=True,
        )
        _record_failure(webhook_event_id, e)
        if isinstance(e, SQLAlchemyError):
            raise StorageError(str(e)) from e
        raise

    try:
        mark_processed(webhook_event_id, outcome)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Could not commit webhook event {event_id}: {e}") from e

    if order_ref is not None and order_ref.created:
        dispatch_order_created(order_ref.order_id)

    return outcome, order_ref


def handle_webhook(provider, raw_body, headers):
    """Run one inbound delivery through the pipeline.

    Args:
        provider: "stripe" or "square".
        raw_body: the exact request bytes.
        headers:  request headers (any mapping; matched case-insensitively).

    Returns a WebhookResult for non-error terminal states. Raises
    SignatureInvalid / MalformedPayload / StorageError /
    MaterializationInvariantViolation otherwise.
    """
    verifier = get_verifier(provider)

    if not verify_signature(provider, raw_body, headers, current_app.config):
        _log_webhook(provider, "unknown", "unknown", "signature_failed")
        raise SignatureInvalid(f"Invalid {provider} webhook signature")

    event_id, event_type, payload = verifier.parse_envelope(raw_body)

    event = claim_event(provider, event_type, event_id, payload)
    if event is None:
        _log_webhook(provider, event_type, event_id, "duplicate")
        return WebhookResult(
            status_code=200,
            body={"received": True, "duplicate": True},
            outcome="duplicate",
        )

    try:
        outcome, _ = process_claimed_event(event)
    except Exception:
        _log_webhook(provider, event_type, event_id, "failed")
        raise

    _log_webhook(provider, event_type, event_id, outcome)
    return WebhookResult(status_code=200, body={"received": True}, outcome=outcome)


def replay_event(provider_event_id):
    """Re-run processing for a claimed event that never completed.

    For operators: a failed event can't be re-claimed by a provider
    redelivery, so this is how it gets its order. Returns the outcome.
    """
    event = get_event(provider_event_id)
    if event is None:
        raise ValueError(f"No webhook event {provider_event_id}")
    if event.processed:
        return "already_processed"

    outcome, _ = process_claimed_event(event)
    _log_webhook(event.provider, event.event_type, event.event_id, f"replayed:{outcome}")
    return outcome
