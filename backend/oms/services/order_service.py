# Overview: Service-layer operations for orders; couples order lifecycle changes to inventory ledger effects.

"""
Order Lifecycle Manager

Every create / update / delete is ONE unit of work: sequence allocation,
header and item writes, and all ledger effects commit together or not at all.

EFFECTIVE DATE:
- invoice_date <= today (business timezone) -> ledger applied now, inventory_deducted=True
- invoice_date >  today                    -> deferred, inventory_deducted=False;
  the reconciliation sweep applies it once the date arrives

COMPENSATION (only when inventory_deducted=True):
- REVERSAL_POLICY=closed_books: original date today -> reverse against that date;
  original date in the past -> return as incoming on today's snapshot
- REVERSAL_POLICY=open_books: always reverse against the original date

STATES (derived, never stored): ACTIVE_PENDING, ACTIVE_APPLIED, DELETED.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from flask import current_app
from sqlalchemy import case
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Customer, Order, OrderItem
from ..time_utils import BusinessClock, get_clock, utcnow
from ..validation import ConflictError, ValidationError, parse_business_date, parse_order_lines
from . import catalog_service, ledger_service, sequence_service
from .concurrency import RETRYABLE_ERRORS, begin_write_transaction, lock_for_update, run_with_retry
from .ledger_service import InventoryLedgerError
from .sequence_service import SequenceConflictError


class OrderError(Exception):
    """Raised for order operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class OrderNotFoundError(OrderError):
    pass


class OrderStateError(OrderError):
    """Operation not allowed in the order's current state (e.g. already deleted)."""


class OrderValidationError(OrderError, ValidationError):
    pass


class OrderConflictError(OrderError, ConflictError):
    """Unique-constraint race on an order or invoice number; safe to resubmit."""


class LedgerInconsistencyError(OrderError):
    """
    An apply or compensation failed mid-operation. Always fatal to the
    enclosing unit of work; never recovered locally.
    """


# =============================================================================
# Helpers
# =============================================================================

def _clock(clock: Optional[BusinessClock]) -> BusinessClock:
    return clock or get_clock()


def is_due(invoice_date: date, today: date) -> bool:
    """Same-day and backdated orders are effective immediately."""
    return invoice_date <= today


def derive_state(order: Order) -> str:
    return order.state


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    # half-up to the minor unit
    return (subtotal_cents * tax_rate_bps + 5000) // 10000


def _to_date(value: Any, field: str, clock: BusinessClock) -> Optional[date]:
    try:
        return parse_business_date(value, field, to_business_date=clock.to_business_date)
    except ValidationError as exc:
        raise OrderValidationError(str(exc)) from exc


def _price_lines(customer: Customer, items: Any) -> list[dict]:
    """Validate item input and price it from the customer's catalog."""
    try:
        lines = parse_order_lines(items)
        quotes = catalog_service.resolve_prices(customer.id, [line["product_id"] for line in lines])
    except ValidationError as exc:
        raise OrderValidationError(str(exc), details={"customer_id": customer.id}) from exc

    priced = []
    for number, line in enumerate(lines, start=1):
        quote = quotes[line["product_id"]]
        priced.append({
            "line_number": number,
            "product_id": quote.product_id,
            "customer_price_id": quote.customer_price_id,
            "product_code": quote.product_code,
            "product_name": quote.product_name,
            "unit": quote.unit,
            "quantity": line["quantity"],
            "unit_price_cents": quote.unit_price_cents,
            "line_total_cents": quote.unit_price_cents * line["quantity"],
            "notes": line["notes"],
        })
    return priced


def _require_active_customer(customer_id: Any) -> Customer:
    try:
        return catalog_service.get_active_customer(customer_id)
    except ValidationError as exc:
        raise OrderValidationError(str(exc), details={"customer_id": customer_id}) from exc


def _apply_customer(order: Order, customer: Customer) -> None:
    order.customer_id = customer.id
    order.customer_code = customer.customer_code
    order.customer_name = customer.name
    order.customer_address = customer.address or ""
    order.tax_rate_bps = customer.tax_rate_bps(current_app.config["STANDARD_TAX_RATE_BPS"])


def _apply_totals(order: Order, lines: list[dict]) -> None:
    subtotal = sum(line["line_total_cents"] for line in lines)
    order.subtotal_cents = subtotal
    order.tax_amount_cents = compute_tax_cents(subtotal, order.tax_rate_bps)
    order.grand_total_cents = subtotal + order.tax_amount_cents
    order.remaining_amount_cents = order.grand_total_cents - (order.paid_amount_cents or 0)


def _replace_items(order: Order, lines: list[dict]) -> None:
    # delete-then-reinsert, never diffed in place
    order.items.clear()
    db.session.flush()
    for line in lines:
        order.items.append(OrderItem(**line))
    db.session.flush()


def _load_for_update(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def _ledger_failure(order: Order, item: OrderItem, action: str, exc: Exception) -> LedgerInconsistencyError:
    current_app.logger.exception(
        "[ORDER %s] Failed to %s inventory for product %s", order.order_number, action, item.product_id
    )
    details = {
        "order_id": order.id,
        "order_number": order.order_number,
        "product_id": item.product_id,
        "line_number": item.line_number,
        "quantity": item.quantity,
    }
    details.update(getattr(exc, "details", {}) or {})
    return LedgerInconsistencyError(
        f"Failed to {action} inventory for product {item.product_code} on order {order.order_number}: {exc}",
        details=details,
    )


def apply_order_inventory(order: Order, *, actor_user_id: int | None, note: str | None = None) -> Order:
    """
    Apply one SALE per item against the order's invoice date and mark the
    order deducted. Runs inside the caller's transaction; the reconciliation
    sweep uses this same path.
    """
    if order.is_deleted:
        raise OrderStateError(f"Order {order.order_number} is deleted", details={"order_id": order.id})
    if order.inventory_deducted:
        raise OrderStateError(
            f"Order {order.order_number} inventory already applied", details={"order_id": order.id}
        )

    for item in order.items:
        try:
            ledger_service.apply_sale(
                product_id=item.product_id,
                quantity=item.quantity,
                order_id=order.id,
                business_date=order.invoice_date,
                actor_user_id=actor_user_id,
                note=note or f"Order {order.order_number}",
            )
        except InventoryLedgerError as exc:
            raise _ledger_failure(order, item, "apply", exc) from exc

    order.inventory_deducted = True
    db.session.flush()
    return order


def _compensate_order_inventory(order: Order, *, today: date, actor_user_id: int | None, reason: str) -> str:
    """Offset every applied item; returns the compensation mode used."""
    closed_books = (
        current_app.config["REVERSAL_POLICY"] == "closed_books"
        and order.invoice_date < today
    )
    mode = "returned-as-incoming" if closed_books else "reversed"

    for item in order.items:
        note = f"Order {order.order_number} {reason}"
        try:
            if closed_books:
                ledger_service.return_as_incoming(
                    order_id=order.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    actor_user_id=actor_user_id,
                    note=note,
                    original_business_date=order.invoice_date,
                    business_date=today,
                )
            else:
                ledger_service.reverse_sale(
                    order_id=order.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    actor_user_id=actor_user_id,
                    note=note,
                    business_date=order.invoice_date,
                )
        except InventoryLedgerError as exc:
            raise _ledger_failure(order, item, "reverse", exc) from exc

    order.inventory_deducted = False
    db.session.flush()
    return mode


def _unit_of_work(op, *, action: str):
    """
    Run op as one transaction: commit inside op, roll back on any failure.

    Retryable lock/version errors re-run the whole unit of work; unique
    constraint violations surface as OrderConflictError.
    """
    def _guarded():
        try:
            return op()
        except RETRYABLE_ERRORS:
            raise
        except (IntegrityError, SequenceConflictError) as exc:
            db.session.rollback()
            current_app.logger.warning("Conflict during order %s: %s", action, exc)
            raise OrderConflictError(
                f"Order {action} conflicted with a concurrent write; please resubmit",
                details={"action": action},
            ) from exc
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_guarded)


# =============================================================================
# Lifecycle operations
# =============================================================================

def create_order(
    customer_id: int,
    items: list[dict],
    *,
    actor_user_id: int,
    order_date: Any = None,
    invoice_date: Any = None,
    customer_notes: str | None = None,
    internal_notes: str | None = None,
    clock: BusinessClock | None = None,
) -> Order:
    """
    Create an order with its items and, when due, its inventory effect.

    invoice_date defaults to order_date, which defaults to today.
    """
    clock = _clock(clock)
    if not actor_user_id:
        raise OrderValidationError("actor_user_id is required for creating an order")

    def _op() -> Order:
        begin_write_transaction()
        today = clock.today()

        customer = _require_active_customer(customer_id)
        lines = _price_lines(customer, items)

        effective_order_date = _to_date(order_date, "order_date", clock) or today
        effective_invoice_date = _to_date(invoice_date, "invoice_date", clock) or effective_order_date

        order_number = sequence_service.next_order_number(today)
        invoice_number = sequence_service.next_invoice_number(effective_invoice_date)

        order = Order(
            order_number=order_number,
            invoice_number=invoice_number,
            order_date=effective_order_date,
            invoice_date=effective_invoice_date,
            paid_amount_cents=0,
            customer_notes=customer_notes,
            internal_notes=internal_notes,
            is_deleted=False,
            inventory_deducted=False,
            created_by_user_id=actor_user_id,
            updated_by_user_id=actor_user_id,
        )
        _apply_customer(order, customer)
        _apply_totals(order, lines)
        db.session.add(order)
        db.session.flush()
        for line in lines:
            order.items.append(OrderItem(**line))
        db.session.flush()

        if is_due(effective_invoice_date, today):
            apply_order_inventory(order, actor_user_id=actor_user_id)
            decision = "applied"
        else:
            decision = "deferred"

        db.session.commit()
        current_app.logger.info(
            "[ORDER %s] Created (invoice %s, invoice date %s): inventory %s",
            order.order_number,
            order.invoice_number,
            order.invoice_date.isoformat(),
            decision,
        )
        return order

    return _unit_of_work(_op, action="create")


def update_order(
    order_id: int,
    items: list[dict],
    *,
    actor_user_id: int,
    customer_id: int | None = None,
    order_date: Any = None,
    invoice_date: Any = None,
    customer_notes: str | None = None,
    internal_notes: str | None = None,
    clock: BusinessClock | None = None,
) -> Order:
    """
    Replace an order's items (and optionally customer / dates) atomically.

    An applied order is compensated against its ORIGINAL invoice date before
    anything changes, then re-applied against the NEW invoice date if due.
    """
    clock = _clock(clock)
    if not actor_user_id:
        raise OrderValidationError("actor_user_id is required for updating an order")

    def _op() -> Order:
        begin_write_transaction()
        today = clock.today()

        order = _load_for_update(order_id)
        if order.is_deleted:
            raise OrderStateError(f"Order {order.order_number} is deleted", details={"order_id": order.id})

        original_invoice_date = order.invoice_date
        new_invoice_date = _to_date(invoice_date, "invoice_date", clock) or original_invoice_date

        if (
            original_invoice_date < today
            and new_invoice_date < today
            and not current_app.config["ALLOW_PAST_ORDER_EDITS"]
        ):
            raise OrderValidationError(
                f"Order {order.order_number} has invoice date {original_invoice_date.isoformat()} and can only "
                f"be moved to today or a later date",
                details={"order_id": order.id, "invoice_date": original_invoice_date.isoformat()},
            )

        if customer_id is not None and customer_id != order.customer_id:
            customer = _require_active_customer(customer_id)
        else:
            customer = order.customer
        lines = _price_lines(customer, items)

        compensation = None
        if order.inventory_deducted:
            compensation = _compensate_order_inventory(
                order, today=today, actor_user_id=actor_user_id, reason="updated - reversing old items"
            )

        _replace_items(order, lines)
        _apply_customer(order, customer)

        new_order_date = _to_date(order_date, "order_date", clock)
        if new_order_date:
            order.order_date = new_order_date

        if new_invoice_date != original_invoice_date:
            order.invoice_date = new_invoice_date
            if (new_invoice_date.year, new_invoice_date.month) != (
                original_invoice_date.year,
                original_invoice_date.month,
            ):
                order.previous_invoice_number = order.invoice_number
                order.invoice_number = sequence_service.next_invoice_number(new_invoice_date)

        _apply_totals(order, lines)
        if customer_notes is not None:
            order.customer_notes = customer_notes or None
        if internal_notes is not None:
            order.internal_notes = internal_notes or None
        order.updated_by_user_id = actor_user_id

        if is_due(new_invoice_date, today):
            apply_order_inventory(order, actor_user_id=actor_user_id, note=f"Order {order.order_number} updated")
            decision = "applied"
        else:
            decision = "deferred"

        db.session.commit()
        current_app.logger.info(
            "[ORDER %s] Updated (invoice date %s -> %s): old items %s, inventory %s",
            order.order_number,
            original_invoice_date.isoformat(),
            new_invoice_date.isoformat(),
            compensation or "not applied",
            decision,
        )
        return order

    return _unit_of_work(_op, action="update")


def delete_order(order_id: int, *, actor_user_id: int, clock: BusinessClock | None = None) -> Order:
    """
    Soft delete an order, compensating its inventory effect first when applied.

    Deleting an already deleted order is an error. Orders whose invoice date is
    strictly in the past are protected unless ALLOW_PAST_ORDER_DELETION is set.
    """
    clock = _clock(clock)
    if not actor_user_id:
        raise OrderValidationError("actor_user_id is required for deleting an order")

    def _op() -> Order:
        begin_write_transaction()
        today = clock.today()

        order = _load_for_update(order_id)
        if order.is_deleted:
            raise OrderStateError(f"Order {order.order_number} is already deleted", details={"order_id": order.id})

        if order.invoice_date < today and not current_app.config["ALLOW_PAST_ORDER_DELETION"]:
            raise OrderValidationError(
                f"Order {order.order_number} has invoice date {order.invoice_date.isoformat()} in the past and "
                f"cannot be deleted; only today's or future invoices can be deleted",
                details={"order_id": order.id, "invoice_date": order.invoice_date.isoformat()},
            )

        compensation = "not applied"
        if order.inventory_deducted:
            compensation = _compensate_order_inventory(
                order, today=today, actor_user_id=actor_user_id, reason="cancelled/deleted"
            )

        order.is_deleted = True
        order.deleted_by_user_id = actor_user_id
        order.deleted_at = utcnow()

        db.session.commit()
        current_app.logger.info(
            "[ORDER %s] Deleted by user %s: inventory %s", order.order_number, actor_user_id, compensation
        )
        return order

    return _unit_of_work(_op, action="delete")


# =============================================================================
# Queries
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    order_number: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    include_deleted: bool = False,
    limit: int = 50,
    offset: int = 0,
    clock: BusinessClock | None = None,
) -> list[Order]:
    """
    Orders sorted today first, then upcoming (nearest first), then past
    (most recent first), then newest created first.
    """
    today = _clock(clock).today()
    q = db.session.query(Order)
    if not include_deleted:
        q = q.filter(Order.is_deleted == False)
    if customer_id:
        q = q.filter(Order.customer_id == customer_id)
    if order_number:
        q = q.filter(Order.order_number.contains(order_number, autoescape=True))
    if start_date:
        q = q.filter(Order.order_date >= start_date)
    if end_date:
        q = q.filter(Order.order_date <= end_date)

    priority = case(
        (Order.invoice_date == today, 0),
        (Order.invoice_date > today, 1),
        else_=2,
    )
    upcoming = case((Order.invoice_date > today, Order.invoice_date), else_=today)
    past = case((Order.invoice_date < today, Order.invoice_date), else_=today)

    return (
        q.order_by(priority, upcoming.asc(), past.desc(), Order.created_at.desc(), Order.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
