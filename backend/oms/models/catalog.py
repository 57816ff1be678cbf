from __future__ import annotations

from ..extensions import db
from oms.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer directory entry.

    Orders copy code/name/address at creation time, so later edits here never
    alter past orders.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_active", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(100), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)
    address = db.Column(db.Text, nullable=False, default="")

    # PPN customers are taxed at STANDARD_TAX_RATE_BPS, NON_PPN at zero
    tax_type = db.Column(db.String(16), nullable=False, default="NON_PPN")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def tax_rate_bps(self, standard_rate_bps: int) -> int:
        return standard_rate_bps if self.tax_type == "PPN" else 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_code": self.customer_code,
            "name": self.name,
            "address": self.address,
            "tax_type": self.tax_type,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Sellable product code (one inventory scope per code)."""
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False, unique=True)
    name = db.Column(db.String(300), nullable=False)
    unit = db.Column(db.String(50), nullable=False, default="PCS")
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "unit": self.unit,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class CustomerPrice(db.Model):
    """Customer-specific price catalog entry (amounts in minor units)."""
    __tablename__ = "customer_prices"
    __table_args__ = (
        db.UniqueConstraint("customer_id", "product_id", name="uq_customer_prices_customer_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    customer = db.relationship("Customer", backref=db.backref("prices", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "unit_price_cents": self.unit_price_cents,
            "is_active": self.is_active,
        }
