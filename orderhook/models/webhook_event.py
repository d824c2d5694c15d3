"""Webhook event model (idempotency ledger).

One row per delivery that passed signature verification. The unique
constraint on event_id is the arbiter of who processes an event: the first
insert wins, every later insert of the same event_id fails at the database
and is answered as a duplicate. Rows are never deleted (audit trail); only
processed / processed_at / error_message change after insert.
"""

import uuid

from orderhook.extensions import db


PROVIDER_STRIPE = "stripe"
PROVIDER_SQUARE = "square"


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"
    __table_args__ = (
        db.Index("ix_webhook_events_provider_event_type", "provider", "event_type"),
        db.Index("ix_webhook_events_processed", "processed"),
        db.Index("ix_webhook_events_created_at", "created_at"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    provider = db.Column(db.String(50), nullable=False)  # stripe | square
    event_type = db.Column(
        db.String(100), nullable=False
    )  # e.g. "payment_intent.succeeded", "payment.updated"
    event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc...", the idempotency key
    payload = db.Column(db.JSON, nullable=False)
    processed = db.Column(
        db.Boolean, nullable=False, default=False, server_default=db.false()
    )
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<WebhookEvent {self.provider}:{self.event_id} ({self.event_type})>"
