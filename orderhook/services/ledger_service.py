"""Ledger service: the idempotency record of every webhook event.

Claiming an event is a single INSERT: the unique constraint on event_id
decides the winner, so concurrent deliveries of the same event can never
both get past this step. No lookup-then-insert, no in-memory cache.

Nothing here commits. The caller owns the transaction so the claim and the
order it produces commit (or roll back) together.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from orderhook.exceptions import StorageError
from orderhook.extensions import db
from orderhook.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


def claim_event(provider, event_type, event_id, payload):
    """Insert the ledger row for an event, making the caller its sole owner.

    Returns the new WebhookEvent (claimed), or None if the event_id is
    already in the ledger (seen by an earlier or concurrent delivery).
    Raises StorageError if the database itself fails.
    """
    event = WebhookEvent(
        provider=provider,
        event_type=event_type,
        event_id=event_id,
        payload=payload,
        processed=False,
    )
    db.session.add(event)

    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info(f"Duplicate webhook event {provider}:{event_id}, skipping")
        return None
    except SQLAlchemyError as e:
        db.session.rollback()
        raise StorageError(f"Could not claim webhook event {event_id}: {e}") from e

    return event


def _get_event(webhook_event_id):
    event = db.session.get(WebhookEvent, webhook_event_id)
    if event is None:
        raise ValueError(f"No webhook event with id {webhook_event_id}")
    return event


def mark_processed(webhook_event_id, outcome="processed"):
    """Flag an event as done. Calling it again is a no-op."""
    event = _get_event(webhook_event_id)
    if event.processed:
        return event

    event.processed = True
    event.processed_at = datetime.now(timezone.utc)
    event.error_message = None
    db.session.flush()

    logger.info(
        f"Webhook event {event.provider}:{event.event_id} processed ({outcome})"
    )
    return event


def mark_failed(webhook_event_id, error):
    """Record a processing error. The event stays processed=False.

    Idempotent, and never reverts an event that already completed.
    """
    event = _get_event(webhook_event_id)
    if event.processed:
        return event

    event.error_message = str(error)
    db.session.flush()
    return event


def get_event(provider_event_id):
    """Look up a ledger row by the provider's event id."""
    return WebhookEvent.query.filter_by(event_id=provider_event_id).first()


def find_stale_events(minutes, now=None):
    """Unprocessed events older than `minutes`, oldest first.

    These are deliveries whose materialization failed and that the provider
    may never redeliver (a redelivery can't re-claim them anyway).
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(minutes=minutes)
    return (
        WebhookEvent.query
        .filter(WebhookEvent.processed.is_(False))
        .filter(WebhookEvent.created_at < cutoff)
        .order_by(WebhookEvent.created_at)
        .all()
    )
