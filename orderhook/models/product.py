"""Product model.

Owned by the catalog; this service only reads it to enrich order items and
decrements inventory after an order commits. Catalog CRUD lives elsewhere.
"""

from orderhook.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.BigInteger, nullable=False)
    inventory = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<Product {self.id} {self.name}>"
