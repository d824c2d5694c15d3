"""Order service: materializing payments into orders.

Responsible for:
- Creating at most one Order per (payment_provider, payment_id)
- Copying line items (with catalog enrichment) onto newly created orders
- The order status state machine for later events on the same payment

Creation is INSERT ... ON CONFLICT DO NOTHING against the unique
(payment_provider, payment_id) constraint. Two different events for the
same payment (payment_intent.succeeded + checkout.session.completed, say)
can race freely; the database lets exactly one insert through.

Money is integer minor units from the payload to the column. Anything else
is a MaterializationInvariantViolation.

Nothing here commits; the webhook transaction does.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from orderhook.exceptions import (
    InvalidTransition,
    MaterializationInvariantViolation,
    StorageError,
)
from orderhook.extensions import db
from orderhook.models.order import Order, OrderItem
from orderhook.services.catalog_service import get_product

logger = logging.getLogger(__name__)


# pending -> completed -> refunded, pending -> failed
TRANSITIONS = {
    Order.STATUS_PENDING: {Order.STATUS_COMPLETED, Order.STATUS_FAILED},
    Order.STATUS_COMPLETED: {Order.STATUS_REFUNDED},
    Order.STATUS_FAILED: set(),
    Order.STATUS_REFUNDED: set(),
}


@dataclass(frozen=True)
class OrderRef:
    order_id: str
    created: bool
    status: str


@dataclass(frozen=True)
class LineItem:
    product_id: Optional[int]
    quantity: int
    unit_price: Optional[int] = None  # minor units; catalog price if None
    name: Optional[str] = None
    description: Optional[str] = None


def _is_minor_amount(value):
    # bool is an int subclass; True is not one cent.
    return isinstance(value, int) and not isinstance(value, bool)


def _validate_amount(amount, what):
    if not _is_minor_amount(amount):
        raise MaterializationInvariantViolation(
            f"{what} must be an integer number of minor units, got {amount!r}"
        )
    if amount < 0:
        raise MaterializationInvariantViolation(f"{what} is negative: {amount}")
    return amount


def _normalize_currency(currency):
    if not isinstance(currency, str) or not currency.strip():
        raise MaterializationInvariantViolation(f"Missing currency (got {currency!r})")
    return currency.strip().upper()


def _insert_for_dialect():
    """INSERT construct that supports ON CONFLICT for the bound database."""
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise StorageError(f"No conflict-aware insert for database dialect {dialect}")


def _build_item_rows(line_items):
    """Validate line items and resolve names/prices from the catalog."""
    rows = []
    for item in line_items or []:
        if not _is_minor_amount(item.quantity) or item.quantity <= 0:
            raise MaterializationInvariantViolation(
                f"Line item quantity must be a positive integer, got {item.quantity!r}"
            )

        product = get_product(item.product_id)
        name = item.name or (product.name if product else None)
        if not name:
            raise MaterializationInvariantViolation(
                f"Line item for product {item.product_id} has no name and no catalog entry"
            )

        unit_price = item.unit_price
        if unit_price is None and product:
            unit_price = product.price_cents
        _validate_amount(unit_price, "Line item unit price")

        rows.append({
            "product_id": item.product_id,
            "product_name": name,
            "product_description": item.description or (product.description if product else None),
            "quantity": item.quantity,
            "unit_price": unit_price,
            "total_price": item.quantity * unit_price,
        })
    return rows


def materialize_order(provider, payment_id, amount_minor, currency,
                      customer_email=None, customer_name=None,
                      webhook_event_id=None, payment_intent_id=None,
                      line_items=None):
    """Create the Order for a completed payment, at most once.

    If an order for (provider, payment_id) already exists this is a no-op
    on the creation side; a pending order is moved to completed.

    Returns an OrderRef. Raises MaterializationInvariantViolation for bad
    amounts/currency/items and StorageError if the database fails.
    """
    if not payment_id:
        raise MaterializationInvariantViolation("Missing payment id")
    _validate_amount(amount_minor, "Order amount")
    currency = _normalize_currency(currency)
    item_rows = _build_item_rows(line_items)

    order_id = str(uuid.uuid4())
    insert = _insert_for_dialect()
    stmt = (
        insert(Order)
        .values(
            id=order_id,
            payment_provider=provider,
            payment_id=payment_id,
            payment_intent_id=payment_intent_id,
            customer_email=customer_email,
            customer_name=customer_name,
            total_amount=amount_minor,
            currency=currency,
            status=Order.STATUS_COMPLETED,
            webhook_event_id=webhook_event_id,
        )
        .on_conflict_do_nothing(index_elements=["payment_provider", "payment_id"])
    )

    try:
        db.session.execute(stmt)
        created = db.session.get(Order, order_id)
        if created is not None:
            for row in item_rows:
                db.session.add(OrderItem(order_id=order_id, **row))
            db.session.flush()
    except SQLAlchemyError as e:
        raise StorageError(f"Could not write order for {provider}:{payment_id}: {e}") from e

    if created is not None:
        logger.info(
            f"Created order {order_id} for {provider}:{payment_id} "
            f"({amount_minor} {currency}, {len(item_rows)} items)"
        )
        return OrderRef(order_id=order_id, created=True, status=created.status)

    existing = Order.query.filter_by(
        payment_provider=provider, payment_id=payment_id
    ).one()
    logger.info(f"Order already exists for payment {provider}:{payment_id}")

    if existing.status == Order.STATUS_PENDING:
        return transition_order_status(provider, payment_id, Order.STATUS_COMPLETED)
    return OrderRef(order_id=existing.id, created=False, status=existing.status)


def transition_order_status(provider, payment_id, target):
    """Move an existing order to `target` if TRANSITIONS allows it.

    Returns the OrderRef, or None if there is no order for the payment.
    Re-applying the status an order already has is a no-op. Raises
    InvalidTransition for anything else not in the table.

    The update is a compare-and-set on the current status, so two events
    racing on one order can't both apply.
    """
    if target not in Order.STATUSES:
        raise ValueError(f"Unknown order status: {target}")

    order = Order.query.filter_by(
        payment_provider=provider, payment_id=payment_id
    ).first()
    if order is None:
        logger.info(f"No order for {provider}:{payment_id}, nothing to move to {target}")
        return None

    current = order.status
    if current == target:
        return OrderRef(order_id=order.id, created=False, status=current)
    if target not in TRANSITIONS.get(current, set()):
        raise InvalidTransition(current, target)

    try:
        result = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == current)
            .values(status=target, updated_at=db.func.now())
            .execution_options(synchronize_session=False)
        )
    except SQLAlchemyError as e:
        raise StorageError(f"Could not update order {order.id}: {e}") from e

    db.session.refresh(order)
    if result.rowcount != 1:
        raise InvalidTransition(order.status, target)

    logger.info(f"Order {order.id} moved {current} -> {target}")
    return OrderRef(order_id=order.id, created=False, status=target)
