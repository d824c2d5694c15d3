# Models package: import all models here so Alembic can discover them.

from orderhook.models.webhook_event import WebhookEvent  # noqa: F401
from orderhook.models.order import Order, OrderItem  # noqa: F401
from orderhook.models.product import Product  # noqa: F401
