from __future__ import annotations

from ..extensions import db
from oms.time_utils import to_iso_date, to_utc_z


ORDER_STATE_PENDING = "ACTIVE_PENDING"
ORDER_STATE_APPLIED = "ACTIVE_APPLIED"
ORDER_STATE_DELETED = "DELETED"


class Order(db.Model):
    """
    Customer order header.

    STATE FLAGS:
    - is_deleted: soft delete, terminal
    - inventory_deducted: True iff the inventory ledger currently holds one
      active SALE movement per item of this order, False iff it holds none

    The lifecycle state (pending / applied / deleted) is derived from these two
    flags and never stored separately.

    Amounts are integer minor units. Items are replaced wholesale on update.
    """
    __tablename__ = "orders"
    __table_args__ = (
        # Reconciliation sweep: not deleted, not deducted, invoice date due
        db.Index("ix_orders_pending_invoice", "is_deleted", "inventory_deducted", "invoice_date"),
        db.Index("ix_orders_customer_order_date", "customer_id", "order_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # ORD-YYYYMMDD-NNN
    order_number = db.Column(db.String(50), nullable=False, unique=True)
    # PREFIX/ROMAN-MONTH/YY/NNNN
    invoice_number = db.Column(db.String(50), nullable=True, unique=True)
    # Number issued before the last invoice-month change (audit trail)
    previous_invoice_number = db.Column(db.String(50), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Denormalized customer data (history preservation)
    customer_code = db.Column(db.String(100), nullable=False)
    customer_name = db.Column(db.String(200), nullable=False)
    customer_address = db.Column(db.Text, nullable=False, default="")

    order_date = db.Column(db.Date, nullable=False, index=True)
    invoice_date = db.Column(db.Date, nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    customer_notes = db.Column(db.String(500), nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)

    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    inventory_deducted = db.Column(db.Boolean, nullable=False, default=False)

    created_by_user_id = db.Column(db.Integer, nullable=True)
    updated_by_user_id = db.Column(db.Integer, nullable=True)
    deleted_by_user_id = db.Column(db.Integer, nullable=True)
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.line_number",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def state(self) -> str:
        if self.is_deleted:
            return ORDER_STATE_DELETED
        if self.inventory_deducted:
            return ORDER_STATE_APPLIED
        return ORDER_STATE_PENDING

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "invoice_number": self.invoice_number,
            "previous_invoice_number": self.previous_invoice_number,
            "customer_id": self.customer_id,
            "customer_code": self.customer_code,
            "customer_name": self.customer_name,
            "customer_address": self.customer_address,
            "order_date": to_iso_date(self.order_date),
            "invoice_date": to_iso_date(self.invoice_date),
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_amount_cents": self.tax_amount_cents,
            "grand_total_cents": self.grand_total_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "customer_notes": self.customer_notes,
            "internal_notes": self.internal_notes,
            "is_deleted": self.is_deleted,
            "inventory_deducted": self.inventory_deducted,
            "state": self.state,
            "created_by_user_id": self.created_by_user_id,
            "updated_by_user_id": self.updated_by_user_id,
            "deleted_by_user_id": self.deleted_by_user_id,
            "deleted_at": to_utc_z(self.deleted_at) if self.deleted_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """One product line; product code/name/unit and price are captured at creation."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    customer_price_id = db.Column(db.Integer, db.ForeignKey("customer_prices.id"), nullable=True)

    product_code = db.Column(db.String(50), nullable=False)
    product_name = db.Column(db.String(300), nullable=False)
    unit = db.Column(db.String(50), nullable=False, default="PCS")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "customer_price_id": self.customer_price_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "unit": self.unit,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
