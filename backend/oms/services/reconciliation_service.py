# Overview: Deferred reconciliation sweep; applies inventory for orders whose invoice date has arrived.

"""
Reconciliation Sweep

SELECTION: not deleted, inventory not deducted, invoice_date <= business date.
Orders missed by an earlier run (downtime, a failed apply) are picked up by
the next one; movements are always dated to the order's own invoice date.

ISOLATION: every order is its own transaction. A failing order is rolled
back, logged and counted; its siblings carry on. Nothing is retried within
the same run.

IDEMPOTENCY: the selection predicate excludes processed orders, and each
order is re-checked under row lock before applying, so overlapping runs
skip instead of double-applying.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Order
from ..time_utils import BusinessClock, get_clock
from . import ledger_service, order_service
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry


STATUS_PROCESSED = "PROCESSED"
STATUS_SKIPPED = "SKIPPED"
STATUS_ERROR = "ERROR"


@dataclass
class ReconciliationSummary:
    business_date: date
    found: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["business_date"] = self.business_date.isoformat()
        return data


def find_pending_order_ids(business_date: date) -> list[tuple[int, str]]:
    """(id, order_number) of every order due on or before business_date and not yet applied."""
    rows = (
        db.session.query(Order.id, Order.order_number)
        .filter(
            Order.is_deleted == False,
            Order.inventory_deducted == False,
            Order.invoice_date <= business_date,
        )
        .order_by(Order.invoice_date, Order.id)
        .all()
    )
    return [(row[0], row[1]) for row in rows]


def reconcile_order(order_id: int, *, business_date: date, actor_user_id: int | None) -> dict:
    """Apply one order's inventory in its own transaction; returns a detail dict."""

    def _op() -> dict:
        begin_write_transaction()
        try:
            order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
            if (
                order is None
                or order.is_deleted
                or order.inventory_deducted
                or order.invoice_date > business_date
            ):
                db.session.rollback()
                return {"order_id": order_id, "status": STATUS_SKIPPED}

            order_service.apply_order_inventory(
                order,
                actor_user_id=actor_user_id,
                note=f"Deferred sale for order {order.order_number}",
            )
            detail = {
                "order_id": order.id,
                "order_number": order.order_number,
                "invoice_date": order.invoice_date.isoformat(),
                "item_count": len(order.items),
                "status": STATUS_PROCESSED,
            }
            db.session.commit()
            return detail
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op)


def _reconcile_in_context(app, order_id: int, business_date: date, actor_user_id: int | None) -> dict:
    with app.app_context():
        try:
            return reconcile_order(order_id, business_date=business_date, actor_user_id=actor_user_id)
        finally:
            db.session.remove()


def run_reconciliation(
    business_date: Optional[date] = None,
    *,
    clock: BusinessClock | None = None,
    max_workers: int | None = None,
) -> ReconciliationSummary:
    """
    Sweep every pending order due on or before business_date (default today).

    Never raises for a single order's failure; the summary carries it.
    """
    clock = clock or get_clock()
    business_date = business_date or clock.today()
    max_workers = max_workers or current_app.config["RECONCILIATION_MAX_WORKERS"]
    actor_user_id = current_app.config["SYSTEM_USER_ID"]
    logger = current_app.logger

    logger.info("[RECONCILIATION] Checking pending orders for %s", business_date.isoformat())
    pending = find_pending_order_ids(business_date)
    # end the read so each order can open its own write transaction
    db.session.rollback()

    summary = ReconciliationSummary(business_date=business_date, found=len(pending))
    if not pending:
        logger.info("[RECONCILIATION] No pending orders for %s", business_date.isoformat())
        return summary

    if max_workers > 1:
        app = current_app._get_current_object()
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="reconcile") as pool:
            futures = [
                (order_id, order_number, pool.submit(
                    _reconcile_in_context, app, order_id, business_date, actor_user_id
                ))
                for order_id, order_number in pending
            ]
            results = []
            for order_id, order_number, future in futures:
                try:
                    results.append((order_id, order_number, future.result(), None))
                except Exception as exc:
                    results.append((order_id, order_number, None, exc))
    else:
        results = []
        for order_id, order_number in pending:
            try:
                detail = reconcile_order(order_id, business_date=business_date, actor_user_id=actor_user_id)
                results.append((order_id, order_number, detail, None))
            except Exception as exc:
                results.append((order_id, order_number, None, exc))

    for order_id, order_number, detail, exc in results:
        if exc is not None:
            summary.errors += 1
            summary.details.append({
                "order_id": order_id,
                "order_number": order_number,
                "status": STATUS_ERROR,
                "error": str(exc),
            })
            logger.error(
                "[RECONCILIATION] Order %s (id=%s) failed: %s", order_number, order_id, exc, exc_info=exc
            )
            continue

        detail.setdefault("order_number", order_number)
        summary.details.append(detail)
        if detail["status"] == STATUS_PROCESSED:
            summary.processed += 1
            logger.info(
                "[RECONCILIATION] Order %s: inventory applied for %s item(s) dated %s",
                order_number,
                detail["item_count"],
                detail["invoice_date"],
            )
        else:
            summary.skipped += 1
            logger.info("[RECONCILIATION] Order %s (id=%s) no longer pending, skipped", order_number, order_id)

    logger.info(
        "[RECONCILIATION] Summary for %s: found=%s processed=%s skipped=%s errors=%s",
        business_date.isoformat(),
        summary.found,
        summary.processed,
        summary.skipped,
        summary.errors,
    )
    return summary


def trigger_reconciliation(business_date: Optional[date] = None) -> ReconciliationSummary:
    """Manual sweep for operational recovery."""
    current_app.logger.info("[RECONCILIATION] Manual trigger")
    return run_reconciliation(business_date)


def open_business_day(business_date: Optional[date] = None, *, clock: BusinessClock | None = None) -> int:
    """Day roll-over job: create the day's snapshots, committed on their own."""
    clock = clock or get_clock()
    business_date = business_date or clock.today()

    def _op() -> int:
        begin_write_transaction()
        try:
            created = ledger_service.open_business_day(business_date)
            db.session.commit()
            return created
        except Exception:
            db.session.rollback()
            raise

    created = run_with_retry(_op)
    current_app.logger.info("[DAY OPEN] %s: %s snapshot(s) created", business_date.isoformat(), created)
    return created
