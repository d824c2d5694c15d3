"""Fulfillment service: side effects that run after an order commits.

Responsible for:
- Order confirmation email to the customer (fire-and-forget)
- Best-effort inventory decrement for ordered products

None of this is transactional with order creation and none of it may fail
the webhook: the order is already durable by the time these run.
"""

import logging

from flask import current_app

from orderhook.extensions import db
from orderhook.models.order import Order
from orderhook.services.catalog_service import decrement_inventory
from orderhook.services.email_service import send_email

logger = logging.getLogger(__name__)

# ISO 4217 currencies whose minor unit is the major unit.
ZERO_DECIMAL_CURRENCIES = {
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
}


def format_amount(amount_minor, currency):
    """Render minor units for display, e.g. (1099, "USD") -> "10.99 USD".

    Integer arithmetic only.
    """
    currency = (currency or "").upper()
    if currency in ZERO_DECIMAL_CURRENCIES:
        return f"{amount_minor} {currency}"
    sign = "-" if amount_minor < 0 else ""
    major, minor = divmod(abs(amount_minor), 100)
    return f"{sign}{major}.{minor:02d} {currency}"


def send_order_confirmation(order_id, customer_email, total_amount, currency):
    """Queue the confirmation email for a new order.

    Returns True if an email was queued.
    """
    if not current_app.config.get("ORDER_NOTIFICATIONS_ENABLED"):
        return False
    if not customer_email:
        logger.info(f"Order {order_id} has no customer email, skipping confirmation")
        return False

    send_email(
        to=customer_email,
        subject=f"Order confirmation #{order_id[:8].upper()}",
        template="emails/order_confirmation.html",
        context={
            "order_id": order_id,
            "total_display": format_amount(total_amount, currency),
        },
    )
    logger.info(f"Order confirmation queued for {customer_email} (order {order_id})")
    return True


def dispatch_order_created(order_id):
    """Run post-commit side effects for a newly created order."""
    try:
        order = db.session.get(Order, order_id)
        if not order:
            logger.warning(f"Post-commit dispatch: order {order_id} not found")
            return

        send_order_confirmation(
            order_id=order.id,
            customer_email=order.customer_email,
            total_amount=order.total_amount,
            currency=order.currency,
        )

        quantities = {}
        for item in order.items:
            if item.product_id is not None:
                quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
        if quantities:
            decrement_inventory(quantities)
    except Exception as e:
        # Never let a side effect turn an acknowledged order into a retry
        logger.error(f"Post-commit dispatch failed for order {order_id}: {e}", exc_info=True)
