from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from oms.time_utils import to_iso_date, to_utc_z


MOVEMENT_SALE = "SALE"
MOVEMENT_SALE_REVERSAL = "SALE_REVERSAL"
MOVEMENT_RETURN_INCOMING = "RETURN_INCOMING"
MOVEMENT_PRODUCTION_IN = "PRODUCTION_IN"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"

MOVEMENT_KINDS = (
    MOVEMENT_SALE,
    MOVEMENT_SALE_REVERSAL,
    MOVEMENT_RETURN_INCOMING,
    MOVEMENT_PRODUCTION_IN,
    MOVEMENT_ADJUSTMENT,
)


class InventoryMovement(db.Model):
    """
    Append-only ledger of signed inventory movements.

    business_date is the day the movement is attributed to; created_at is
    system time. Corrections are new offsetting rows.

    IMMUTABLE: Records are never updated or deleted. The order reference is a
    lookup only; soft-deleting an order leaves its movements in place.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inv_movements_product_date", "product_id", "business_date"),
        db.Index("ix_inv_movements_order_product", "order_id", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)

    # Negative for goods out (SALE), positive for goods in
    quantity = db.Column(db.Integer, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)

    business_date = db.Column(db.Date, nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    actor_user_id = db.Column(db.Integer, nullable=True)
    reason = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "order_id": self.order_id,
            "business_date": to_iso_date(self.business_date),
            "created_at": to_utc_z(self.created_at),
            "actor_user_id": self.actor_user_id,
            "reason": self.reason,
        }


@event.listens_for(InventoryMovement, "before_update")
def _reject_movement_update(mapper, connection, target):
    raise ValueError(f"Inventory movement {target.id} is immutable")


@event.listens_for(InventoryMovement, "before_delete")
def _reject_movement_delete(mapper, connection, target):
    raise ValueError(f"Inventory movement {target.id} is immutable")


class DailyInventorySnapshot(db.Model):
    """
    Per-product, per-business-date stock cache, maintained as movements post.

    closing_stock = opening_stock + incoming_quantity - reserved_quantity + adjustment_quantity

    opening_stock carries forward from the previous snapshot's closing stock.
    reserved_quantity is the quantity ordered against this business date.
    """
    __tablename__ = "daily_inventory_snapshots"
    __table_args__ = (
        db.UniqueConstraint("product_id", "business_date", name="uq_daily_snapshots_product_date"),
        db.Index("ix_daily_snapshots_date_active", "business_date", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    business_date = db.Column(db.Date, nullable=False)

    opening_stock = db.Column(db.Integer, nullable=False, default=0)
    incoming_quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    adjustment_quantity = db.Column(db.Integer, nullable=False, default=0)
    closing_stock = db.Column(db.Integer, nullable=False, default=0)

    minimum_stock = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    product = db.relationship("Product")

    @property
    def is_low_stock(self) -> bool:
        return self.closing_stock <= self.minimum_stock

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "business_date": to_iso_date(self.business_date),
            "opening_stock": self.opening_stock,
            "incoming_quantity": self.incoming_quantity,
            "reserved_quantity": self.reserved_quantity,
            "adjustment_quantity": self.adjustment_quantity,
            "closing_stock": self.closing_stock,
            "minimum_stock": self.minimum_stock,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
