"""Catalog service: the two touch points with the product catalog.

- get_product: lookup used to enrich order items at materialization time
- decrement_inventory: best-effort stock update run after an order commits

Neither is part of the order's transaction guarantees: a missing product
just means the item carries the name it was given, and a failed inventory
update is logged, not retried.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from orderhook.extensions import db
from orderhook.models.product import Product

logger = logging.getLogger(__name__)


def get_product(product_id):
    """Return the Product or None (deleted, or never existed)."""
    if product_id is None:
        return None
    return db.session.get(Product, product_id)


def decrement_inventory(quantities):
    """Subtract ordered quantities from product stock.

    Args:
        quantities: dict of product_id -> quantity ordered.

    Commits its own transaction. Stock never goes below zero. Returns the
    number of products updated.
    """
    updated = 0
    try:
        for product_id, quantity in quantities.items():
            product = db.session.get(Product, product_id)
            if not product:
                logger.warning(f"Inventory: product {product_id} no longer exists, skipping")
                continue
            product.inventory = max((product.inventory or 0) - quantity, 0)
            updated += 1
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Inventory decrement failed for {quantities}: {e}")
        return 0
    return updated
