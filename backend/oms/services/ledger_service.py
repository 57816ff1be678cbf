# Overview: Service-layer operations for the inventory ledger; movements and daily snapshots.

"""
Inventory Ledger Invariants & Time Semantics (authoritative)

Ledger:
- InventoryMovement rows are append-only; corrections are new offsetting rows.
- Signed quantity: SALE is negative, SALE_REVERSAL / RETURN_INCOMING /
  PRODUCTION_IN are positive, ADJUSTMENT carries its own sign.
- business_date is the day a movement is attributed to, not the day it was
  recorded.

Snapshots:
- One DailyInventorySnapshot per (product, business_date).
- closing_stock = opening_stock + incoming_quantity - reserved_quantity + adjustment_quantity
- A snapshot is created on first touch with opening_stock = closing_stock of
  the latest earlier snapshot (0 if none).
- A movement dated before later snapshots rolls its delta forward into every
  later snapshot's opening and closing stock, so the latest closing stock
  always equals the ledger sum.
- Writers lock each snapshot row they change until the enclosing transaction ends.
  Creating a snapshot also locks the earlier snapshot it copies its opening
  stock from.

Transactions:
- Every operation runs inside the caller's transaction (db.session by default,
  or an explicit session) and never commits or rolls back.
- Whether an order's effect is currently applied is decided by
  Order.inventory_deducted alone; the ledger is never scanned for that.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import DailyInventorySnapshot, InventoryMovement, Product
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_PRODUCTION_IN,
    MOVEMENT_RETURN_INCOMING,
    MOVEMENT_SALE,
    MOVEMENT_SALE_REVERSAL,
)
from .concurrency import lock_for_update


class InventoryLedgerError(Exception):
    """Raised when a ledger operation cannot be applied."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(InventoryLedgerError):
    """A SALE would take the snapshot's closing stock below zero."""


class SnapshotMismatchError(InventoryLedgerError):
    """A reversal does not match what the snapshot holds for that day."""


def _session(session):
    return session or db.session


def _require_product(session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if product is None:
        raise InventoryLedgerError(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def _require_positive(quantity: int, product_id: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InventoryLedgerError(
            f"Quantity must be a positive integer, got {quantity!r}",
            details={"product_id": product_id, "quantity": quantity},
        )


def _previous_snapshot_query(session, product_id: int, business_date: date):
    # Locked so a concurrent roll-forward into this row finishes before its
    # closing stock becomes the new day's opening stock.
    return lock_for_update(
        session.query(DailyInventorySnapshot)
        .filter(
            DailyInventorySnapshot.product_id == product_id,
            DailyInventorySnapshot.business_date < business_date,
        )
        .order_by(DailyInventorySnapshot.business_date.desc())
        .limit(1)
    )


def _previous_snapshot(session, product_id: int, business_date: date) -> Optional[DailyInventorySnapshot]:
    return _previous_snapshot_query(session, product_id, business_date).first()


def _locked_snapshot(session, product_id: int, business_date: date) -> DailyInventorySnapshot:
    """Return the (product, date) snapshot under row lock, creating it if missing."""
    snapshot = lock_for_update(
        session.query(DailyInventorySnapshot).filter_by(product_id=product_id, business_date=business_date)
    ).first()
    if snapshot is not None:
        return snapshot

    previous = _previous_snapshot(session, product_id, business_date)
    opening = previous.closing_stock if previous else 0
    snapshot = DailyInventorySnapshot(
        product_id=product_id,
        business_date=business_date,
        opening_stock=opening,
        incoming_quantity=0,
        reserved_quantity=0,
        adjustment_quantity=0,
        closing_stock=opening,
        minimum_stock=previous.minimum_stock if previous else 0,
        is_active=True,
    )
    session.add(snapshot)
    session.flush()
    return snapshot


def _roll_forward(session, product_id: int, business_date: date, delta: int) -> int:
    """Carry a closing-stock delta into every snapshot after business_date."""
    if not delta:
        return 0
    later = lock_for_update(
        session.query(DailyInventorySnapshot).filter(
            DailyInventorySnapshot.product_id == product_id,
            DailyInventorySnapshot.business_date > business_date,
        )
    ).order_by(DailyInventorySnapshot.business_date).all()
    for snapshot in later:
        snapshot.opening_stock += delta
        snapshot.closing_stock += delta
    return len(later)


def _post(
    session,
    *,
    kind: str,
    product_id: int,
    quantity: int,
    business_date: date,
    order_id: int | None,
    actor_user_id: int | None,
    reason: str | None,
    snapshot: DailyInventorySnapshot,
) -> InventoryMovement:
    snapshot.closing_stock += quantity
    _roll_forward(session, product_id, business_date, quantity)

    movement = InventoryMovement(
        product_id=product_id,
        kind=kind,
        quantity=quantity,
        order_id=order_id,
        business_date=business_date,
        actor_user_id=actor_user_id,
        reason=(reason or "")[:255] or None,
    )
    session.add(movement)
    session.flush()  # ensures movement.id is assigned without committing
    return movement


def apply_sale(
    *,
    product_id: int,
    quantity: int,
    order_id: int,
    business_date: date,
    actor_user_id: int | None,
    note: str | None = None,
    session=None,
) -> InventoryMovement:
    """
    Append a SALE movement (-quantity) and reserve the quantity on the
    business date's snapshot.

    Call at most once per order item while the order's inventory_deducted
    flag is False.
    """
    session = _session(session)
    _require_positive(quantity, product_id)
    _require_product(session, product_id)

    snapshot = _locked_snapshot(session, product_id, business_date)
    if current_app.config.get("ENFORCE_STOCK_AVAILABILITY", True) and snapshot.closing_stock < quantity:
        raise InsufficientStockError(
            f"Insufficient stock for product {product_id} on {business_date.isoformat()}. "
            f"Available: {snapshot.closing_stock}, Requested: {quantity}",
            details={
                "product_id": product_id,
                "business_date": business_date.isoformat(),
                "available": snapshot.closing_stock,
                "requested": quantity,
            },
        )

    snapshot.reserved_quantity += quantity
    return _post(
        session,
        kind=MOVEMENT_SALE,
        product_id=product_id,
        quantity=-quantity,
        business_date=business_date,
        order_id=order_id,
        actor_user_id=actor_user_id,
        reason=note or f"Sale for order {order_id}",
        snapshot=snapshot,
    )


def reverse_sale(
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    actor_user_id: int | None,
    note: str | None,
    business_date: date,
    session=None,
) -> InventoryMovement:
    """
    Append a SALE_REVERSAL (+quantity) dated to the original business date
    the sale was applied against, releasing that day's reservation.
    """
    session = _session(session)
    _require_positive(quantity, product_id)
    _require_product(session, product_id)

    snapshot = _locked_snapshot(session, product_id, business_date)
    if snapshot.reserved_quantity < quantity:
        raise SnapshotMismatchError(
            f"Cannot reverse sale of order {order_id}: reserved quantity "
            f"({snapshot.reserved_quantity}) on {business_date.isoformat()} is less than {quantity}",
            details={
                "order_id": order_id,
                "product_id": product_id,
                "business_date": business_date.isoformat(),
                "reserved": snapshot.reserved_quantity,
                "quantity": quantity,
            },
        )

    snapshot.reserved_quantity -= quantity
    return _post(
        session,
        kind=MOVEMENT_SALE_REVERSAL,
        product_id=product_id,
        quantity=quantity,
        business_date=business_date,
        order_id=order_id,
        actor_user_id=actor_user_id,
        reason=note or f"Reversal of order {order_id}",
        snapshot=snapshot,
    )


def return_as_incoming(
    *,
    order_id: int,
    product_id: int,
    quantity: int,
    actor_user_id: int | None,
    note: str | None,
    original_business_date: date,
    business_date: date,
    session=None,
) -> InventoryMovement:
    """
    Compensate a sale from a closed day by booking the quantity back as
    incoming goods on business_date (today). The original day's snapshot is
    left untouched.
    """
    session = _session(session)
    _require_positive(quantity, product_id)
    _require_product(session, product_id)
    if business_date < original_business_date:
        raise InventoryLedgerError(
            "Cannot return stock to a day before the original sale",
            details={
                "order_id": order_id,
                "product_id": product_id,
                "original_business_date": original_business_date.isoformat(),
                "business_date": business_date.isoformat(),
            },
        )

    snapshot = _locked_snapshot(session, product_id, business_date)
    snapshot.incoming_quantity += quantity
    return _post(
        session,
        kind=MOVEMENT_RETURN_INCOMING,
        product_id=product_id,
        quantity=quantity,
        business_date=business_date,
        order_id=order_id,
        actor_user_id=actor_user_id,
        reason=note or f"Return from order {order_id} (sold {original_business_date.isoformat()})",
        snapshot=snapshot,
    )


def record_incoming(
    *,
    product_id: int,
    quantity: int,
    business_date: date,
    actor_user_id: int | None = None,
    note: str | None = None,
    kind: str = MOVEMENT_PRODUCTION_IN,
    session=None,
) -> InventoryMovement:
    """Goods in (production output, purchase receipt)."""
    session = _session(session)
    _require_positive(quantity, product_id)
    _require_product(session, product_id)
    if kind not in (MOVEMENT_PRODUCTION_IN, MOVEMENT_RETURN_INCOMING):
        raise InventoryLedgerError(f"Not an incoming movement kind: {kind}")

    snapshot = _locked_snapshot(session, product_id, business_date)
    snapshot.incoming_quantity += quantity
    return _post(
        session,
        kind=kind,
        product_id=product_id,
        quantity=quantity,
        business_date=business_date,
        order_id=None,
        actor_user_id=actor_user_id,
        reason=note,
        snapshot=snapshot,
    )


def record_adjustment(
    *,
    product_id: int,
    delta: int,
    business_date: date,
    actor_user_id: int | None = None,
    note: str | None = None,
    session=None,
) -> InventoryMovement:
    """Signed stock correction (stock opname); a reason is required."""
    session = _session(session)
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InventoryLedgerError("Adjustment delta must be a non-zero integer")
    if not note or not note.strip():
        raise InventoryLedgerError("Adjustment requires a reason")
    _require_product(session, product_id)

    snapshot = _locked_snapshot(session, product_id, business_date)
    snapshot.adjustment_quantity += delta
    return _post(
        session,
        kind=MOVEMENT_ADJUSTMENT,
        product_id=product_id,
        quantity=delta,
        business_date=business_date,
        order_id=None,
        actor_user_id=actor_user_id,
        reason=note,
        snapshot=snapshot,
    )


def open_business_day(business_date: date, *, session=None) -> int:
    """
    Day roll-over: create today's snapshot for every active product that has
    none yet, carrying forward the previous closing stock and minimum.

    Safe to call repeatedly. Returns the number of snapshots created.
    """
    session = _session(session)
    existing = {
        row[0]
        for row in session.query(DailyInventorySnapshot.product_id)
        .filter(DailyInventorySnapshot.business_date == business_date)
        .all()
    }
    created = 0
    products = session.query(Product).filter(Product.is_active == True).order_by(Product.id).all()
    for product in products:
        if product.id in existing:
            continue
        _locked_snapshot(session, product.id, business_date)
        created += 1
    return created


def set_minimum_stock(*, product_id: int, minimum: int, business_date: date, session=None) -> DailyInventorySnapshot:
    session = _session(session)
    if isinstance(minimum, bool) or not isinstance(minimum, int) or minimum < 0:
        raise InventoryLedgerError("Minimum stock must be a non-negative integer")
    _require_product(session, product_id)
    snapshot = _locked_snapshot(session, product_id, business_date)
    snapshot.minimum_stock = minimum
    session.flush()
    return snapshot


def get_snapshot(product_id: int, business_date: date, *, session=None) -> DailyInventorySnapshot | None:
    session = _session(session)
    return session.query(DailyInventorySnapshot).filter_by(
        product_id=product_id, business_date=business_date
    ).first()


def get_current_stock(product_id: int, as_of: date, *, session=None) -> int:
    """Closing stock of the latest snapshot on or before as_of (0 if none)."""
    session = _session(session)
    snapshot = (
        session.query(DailyInventorySnapshot)
        .filter(
            DailyInventorySnapshot.product_id == product_id,
            DailyInventorySnapshot.business_date <= as_of,
        )
        .order_by(DailyInventorySnapshot.business_date.desc())
        .first()
    )
    return snapshot.closing_stock if snapshot else 0


def get_ledger_balance(product_id: int, as_of: date | None = None, *, session=None) -> int:
    """Sum of movements; equals get_current_stock when snapshots are consistent."""
    session = _session(session)
    q = session.query(func.coalesce(func.sum(InventoryMovement.quantity), 0)).filter(
        InventoryMovement.product_id == product_id
    )
    if as_of is not None:
        q = q.filter(InventoryMovement.business_date <= as_of)
    return int(q.scalar() or 0)


def list_low_stock(business_date: date, *, session=None) -> list[DailyInventorySnapshot]:
    """Active snapshots for the day at or below their minimum threshold."""
    session = _session(session)
    return (
        session.query(DailyInventorySnapshot)
        .filter(
            DailyInventorySnapshot.business_date == business_date,
            DailyInventorySnapshot.is_active == True,
            DailyInventorySnapshot.closing_stock <= DailyInventorySnapshot.minimum_stock,
        )
        .order_by(DailyInventorySnapshot.product_id)
        .all()
    )


def movements_for_order(order_id: int, *, session=None) -> list[InventoryMovement]:
    session = _session(session)
    return (
        session.query(InventoryMovement)
        .filter(InventoryMovement.order_id == order_id)
        .order_by(InventoryMovement.id)
        .all()
    )


def net_quantity_for_order(order_id: int, *, session=None) -> int:
    session = _session(session)
    total = session.query(func.coalesce(func.sum(InventoryMovement.quantity), 0)).filter(
        InventoryMovement.order_id == order_id
    ).scalar()
    return int(total or 0)
