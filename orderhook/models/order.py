"""Order models.

- Order: one row per completed payment. (payment_provider, payment_id) is
  unique, so a second creation for the same payment is rejected by the
  database rather than by a lookup in application code.
- OrderItem: line items, with the product name/description copied at
  purchase time so later catalog edits or deletes don't rewrite history.

All money columns are integer minor units (cents).
"""

import uuid

from orderhook.extensions import db


class Order(db.Model):
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint(
            "payment_provider",
            "payment_id",
            name="uq_orders_payment_provider_payment_id",
        ),
        db.Index("ix_orders_customer_email", "customer_email"),
        db.Index("ix_orders_status", "status"),
        db.Index("ix_orders_created_at", "created_at"),
    )

    # -- Valid statuses --
    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"
    STATUSES = [
        STATUS_PENDING,
        STATUS_COMPLETED,
        STATUS_FAILED,
        STATUS_REFUNDED,
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    payment_provider = db.Column(db.String(50), nullable=False)  # stripe | square
    payment_id = db.Column(db.String(255), nullable=False)
    payment_intent_id = db.Column(db.String(255), nullable=True)  # Stripe only
    customer_email = db.Column(db.String(255), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    total_amount = db.Column(db.BigInteger, nullable=False)  # minor units
    currency = db.Column(
        db.String(10), nullable=False, default="USD", server_default="USD"
    )
    status = db.Column(
        db.String(50), nullable=False, default=STATUS_PENDING
    )  # pending | completed | failed | refunded
    # Traceability only; the event does not own the order.
    webhook_event_id = db.Column(
        db.String(36), db.ForeignKey("webhook_events.id"), nullable=True
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.created_at",
    )
    webhook_event = db.relationship("WebhookEvent")

    def __repr__(self):
        return (
            f"<Order {self.payment_provider}:{self.payment_id} "
            f"{self.total_amount} {self.currency} ({self.status})>"
        )


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.Index("ix_order_items_order_id", "order_id"),
        db.Index("ix_order_items_product_id", "product_id"),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    order_id = db.Column(
        db.String(36),
        db.ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Soft reference: no FK, the product may have been deleted since.
    product_id = db.Column(db.Integer, nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    product_description = db.Column(db.Text, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.BigInteger, nullable=False)  # minor units
    total_price = db.Column(db.BigInteger, nullable=False)  # quantity * unit_price
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    order = db.relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} x{self.quantity}>"
