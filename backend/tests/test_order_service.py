# Overview: Pytest coverage for the order lifecycle and its inventory effects.

"""
Order Lifecycle Tests

Every create / update / delete either commits the order and its ledger
effect together or leaves no trace. Inventory is applied exactly when the
invoice date is today or earlier, and compensated exactly when it was applied.
"""

from datetime import timedelta

import pytest
from oms.models import InventoryMovement, Order, OrderItem, SequenceBucket
from oms.models.inventory import (
    MOVEMENT_RETURN_INCOMING,
    MOVEMENT_SALE,
    MOVEMENT_SALE_REVERSAL,
)
from oms.models.orders import ORDER_STATE_APPLIED, ORDER_STATE_DELETED, ORDER_STATE_PENDING
from oms.services import ledger_service, order_service, sequence_service
from oms.services.ledger_service import InventoryLedgerError
from oms.services.order_service import (
    LedgerInconsistencyError,
    OrderConflictError,
    OrderNotFoundError,
    OrderStateError,
    OrderValidationError,
)
from oms.services.sequence_service import SequenceConflictError
from oms.validation import ConflictError, ValidationError

from conftest import OPENING_STOCK, TODAY, closing_stock

USER_ID = 7


def _items(catalog, qty_a=3, qty_b=2):
    items = []
    if qty_a:
        items.append({"product_id": catalog["a"].id, "quantity": qty_a})
    if qty_b:
        items.append({"product_id": catalog["b"].id, "quantity": qty_b})
    return items


def _create(catalog, items=None, **kwargs):
    return order_service.create_order(
        catalog["customer"].id,
        items if items is not None else _items(catalog),
        actor_user_id=USER_ID,
        **kwargs,
    )


def _movements(order_id):
    return [(m.kind, m.product_id, m.quantity, m.business_date) for m in ledger_service.movements_for_order(order_id)]


def _assert_nothing_written(session):
    assert session.query(Order).count() == 0
    assert session.query(OrderItem).count() == 0
    assert session.query(InventoryMovement).filter(InventoryMovement.order_id.isnot(None)).count() == 0
    assert session.query(SequenceBucket).count() == 0


class TestCreate:
    def test_same_day_order_applies_inventory(self, db_session, catalog):
        order = _create(catalog)

        assert order.order_number == "ORD-20260310-001"
        assert order.invoice_number == "SL/OJ-MKT/III/26/0001"
        assert order.order_date == TODAY
        assert order.invoice_date == TODAY
        assert order.subtotal_cents == 4000
        assert order.tax_amount_cents == 0
        assert order.grand_total_cents == 4000
        assert order.remaining_amount_cents == 4000
        assert order.inventory_deducted is True
        assert order.state == ORDER_STATE_APPLIED
        assert [(i.line_number, i.product_code, i.quantity, i.line_total_cents) for i in order.items] == [
            (1, "PRD-A", 3, 3000),
            (2, "PRD-B", 2, 1000),
        ]
        assert _movements(order.id) == [
            (MOVEMENT_SALE, catalog["a"].id, -3, TODAY),
            (MOVEMENT_SALE, catalog["b"].id, -2, TODAY),
        ]
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK - 3
        assert closing_stock(catalog["b"].id, TODAY) == OPENING_STOCK - 2

    def test_taxed_customer_totals(self, db_session, catalog):
        order = order_service.create_order(
            catalog["taxed_customer"].id, _items(catalog), actor_user_id=USER_ID
        )

        assert order.tax_rate_bps == 1100
        assert order.tax_amount_cents == 440
        assert order.grand_total_cents == 4440
        assert order.customer_name == "PT Maju Jaya"

    @pytest.mark.parametrize("subtotal,expected", [(1000, 110), (1005, 111), (45, 5), (0, 0)])
    def test_tax_rounds_half_up(self, subtotal, expected):
        assert order_service.compute_tax_cents(subtotal, 1100) == expected

    def test_future_order_is_deferred(self, db_session, catalog):
        order = _create(catalog, invoice_date=TODAY + timedelta(days=1))

        assert order.inventory_deducted is False
        assert order.state == ORDER_STATE_PENDING
        assert _movements(order.id) == []
        assert closing_stock(catalog["a"].id, TODAY + timedelta(days=1)) is None

    def test_invoice_number_uses_invoice_month(self, db_session, catalog):
        order = _create(catalog, invoice_date="2026-04-02")

        assert order.order_number == "ORD-20260310-001"
        assert order.invoice_number == "SL/OJ-MKT/IV/26/0001"

    def test_invoice_date_defaults_to_order_date(self, db_session, catalog):
        order = _create(catalog, order_date=TODAY + timedelta(days=2))

        assert order.invoice_date == TODAY + timedelta(days=2)
        assert order.inventory_deducted is False

    def test_backdated_order_applies_against_its_own_date(self, db_session, catalog):
        past = TODAY - timedelta(days=3)
        order = _create(catalog, invoice_date=past)

        assert order.inventory_deducted is True
        assert {m[3] for m in _movements(order.id)} == {past}
        assert closing_stock(catalog["a"].id, past) == OPENING_STOCK - 3

    def test_order_numbers_increment_per_day(self, db_session, catalog):
        first = _create(catalog)
        second = _create(catalog)

        assert first.order_number == "ORD-20260310-001"
        assert second.order_number == "ORD-20260310-002"
        assert second.invoice_number == "SL/OJ-MKT/III/26/0002"

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"product_id": 1}],
        [{"quantity": 2}],
    ])
    def test_invalid_items_rejected_before_any_write(self, db_session, catalog, items):
        with pytest.raises(OrderValidationError):
            _create(catalog, items=items or [])
        _assert_nothing_written(db_session)

    def test_zero_quantity_rejected(self, db_session, catalog):
        with pytest.raises(ValidationError, match="must be > 0"):
            _create(catalog, items=[{"product_id": catalog["a"].id, "quantity": 0}])
        _assert_nothing_written(db_session)

    def test_unknown_customer_rejected(self, db_session, catalog):
        with pytest.raises(OrderValidationError, match="Customer 9999"):
            order_service.create_order(9999, _items(catalog), actor_user_id=USER_ID)
        _assert_nothing_written(db_session)

    def test_inactive_customer_rejected(self, db_session, catalog):
        catalog["customer"].is_active = False
        db_session.commit()

        with pytest.raises(OrderValidationError):
            _create(catalog)
        _assert_nothing_written(db_session)

    def test_product_without_customer_price_rejected(self, db_session, catalog):
        from oms.models import Product

        unpriced = Product(code="PRD-X", name="Kue Lapis")
        db_session.add(unpriced)
        db_session.commit()

        with pytest.raises(OrderValidationError, match="PRD-X"):
            _create(catalog, items=[{"product_id": unpriced.id, "quantity": 1}])
        _assert_nothing_written(db_session)

    def test_actor_required(self, db_session, catalog):
        with pytest.raises(OrderValidationError):
            order_service.create_order(catalog["customer"].id, _items(catalog), actor_user_id=None)

    def test_insufficient_stock_rolls_back_everything(self, db_session, catalog):
        with pytest.raises(LedgerInconsistencyError) as exc:
            _create(catalog, items=[{"product_id": catalog["a"].id, "quantity": OPENING_STOCK + 1}])

        assert exc.value.details["product_id"] == catalog["a"].id
        _assert_nothing_written(db_session)
        assert closing_stock(catalog["a"].id, TODAY) is None

    def test_failure_between_items_and_ledger_rolls_back(self, db_session, catalog, monkeypatch):
        def fail(**kwargs):
            raise RuntimeError("injected ledger outage")

        monkeypatch.setattr(ledger_service, "apply_sale", fail)

        with pytest.raises(RuntimeError):
            _create(catalog)
        _assert_nothing_written(db_session)

    def test_partial_apply_rolls_back(self, db_session, catalog, monkeypatch):
        original = ledger_service.apply_sale

        def fail_second(**kwargs):
            if kwargs["product_id"] == catalog["b"].id:
                raise InventoryLedgerError("injected failure on second item")
            return original(**kwargs)

        monkeypatch.setattr(ledger_service, "apply_sale", fail_second)

        with pytest.raises(LedgerInconsistencyError):
            _create(catalog)
        _assert_nothing_written(db_session)
        assert db_session.query(InventoryMovement).filter_by(product_id=catalog["a"].id).count() == 1

    def test_sequence_conflict_surfaces_as_conflict(self, db_session, catalog, monkeypatch):
        def conflict(*args, **kwargs):
            raise SequenceConflictError("bucket created concurrently")

        monkeypatch.setattr(sequence_service, "next_order_number", conflict)

        with pytest.raises(OrderConflictError) as exc:
            _create(catalog)
        assert isinstance(exc.value, ConflictError)
        assert db_session.query(Order).count() == 0


class TestUpdate:
    def test_quantity_change_reverses_then_reapplies(self, db_session, catalog):
        order = _create(catalog, items=_items(catalog, qty_b=0))

        updated = order_service.update_order(
            order.id, _items(catalog, qty_a=5, qty_b=0), actor_user_id=USER_ID
        )

        assert _movements(order.id) == [
            (MOVEMENT_SALE, catalog["a"].id, -3, TODAY),
            (MOVEMENT_SALE_REVERSAL, catalog["a"].id, 3, TODAY),
            (MOVEMENT_SALE, catalog["a"].id, -5, TODAY),
        ]
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK - 5
        assert ledger_service.get_snapshot(catalog["a"].id, TODAY).reserved_quantity == 5
        assert updated.inventory_deducted is True
        assert [i.quantity for i in updated.items] == [5]
        assert updated.subtotal_cents == 5000
        assert updated.updated_by_user_id == USER_ID

    def test_items_replaced_wholesale(self, db_session, catalog):
        order = _create(catalog)
        old_ids = {i.id for i in order.items}

        updated = order_service.update_order(
            order.id, [{"product_id": catalog["b"].id, "quantity": 4, "notes": "extra"}], actor_user_id=USER_ID
        )

        assert [(i.line_number, i.product_code, i.quantity, i.notes) for i in updated.items] == [
            (1, "PRD-B", 4, "extra")
        ]
        assert not old_ids & {i.id for i in updated.items}
        assert db_session.query(OrderItem).count() == 1
        assert ledger_service.net_quantity_for_order(order.id) == -4
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK

    def test_notes_kept_when_omitted_and_cleared_by_empty_string(self, db_session, catalog):
        order = order_service.create_order(
            catalog["customer"].id,
            _items(catalog),
            customer_notes="Leave at gate",
            internal_notes="Call first",
            actor_user_id=USER_ID,
        )

        kept = order_service.update_order(order.id, _items(catalog, qty_a=1), actor_user_id=USER_ID)
        assert (kept.customer_notes, kept.internal_notes) == ("Leave at gate", "Call first")

        cleared = order_service.update_order(
            order.id, _items(catalog, qty_a=1), customer_notes="", internal_notes="", actor_user_id=USER_ID
        )
        assert cleared.customer_notes is None
        assert cleared.internal_notes is None

    def test_move_applied_order_to_future_month(self, db_session, catalog):
        order = _create(catalog)
        original_invoice = order.invoice_number

        updated = order_service.update_order(
            order.id, _items(catalog), invoice_date="2026-04-02", actor_user_id=USER_ID
        )

        assert updated.inventory_deducted is False
        assert updated.state == ORDER_STATE_PENDING
        assert updated.previous_invoice_number == original_invoice
        assert updated.invoice_number == "SL/OJ-MKT/IV/26/0001"
        assert ledger_service.net_quantity_for_order(order.id) == 0
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK

    def test_same_month_redate_keeps_invoice_number(self, db_session, catalog):
        order = _create(catalog)
        number = order.invoice_number

        updated = order_service.update_order(
            order.id, _items(catalog), invoice_date=TODAY + timedelta(days=5), actor_user_id=USER_ID
        )

        assert updated.invoice_number == number
        assert updated.previous_invoice_number is None

    def test_deferred_order_moved_to_today_is_applied(self, db_session, catalog):
        order = _create(catalog, invoice_date=TODAY + timedelta(days=3))

        updated = order_service.update_order(
            order.id, _items(catalog), invoice_date=TODAY, actor_user_id=USER_ID
        )

        assert updated.inventory_deducted is True
        assert _movements(order.id) == [
            (MOVEMENT_SALE, catalog["a"].id, -3, TODAY),
            (MOVEMENT_SALE, catalog["b"].id, -2, TODAY),
        ]

    def test_change_customer_refreshes_header(self, db_session, catalog):
        order = _create(catalog)

        updated = order_service.update_order(
            order.id, _items(catalog), customer_id=catalog["taxed_customer"].id, actor_user_id=USER_ID
        )

        assert updated.customer_code == "CUST-PPN"
        assert updated.tax_amount_cents == 440

    def test_reversal_failure_aborts_update(self, db_session, catalog, monkeypatch):
        order = _create(catalog)

        def fail(**kwargs):
            raise InventoryLedgerError("injected reversal failure")

        monkeypatch.setattr(ledger_service, "reverse_sale", fail)

        with pytest.raises(LedgerInconsistencyError):
            order_service.update_order(order.id, _items(catalog, qty_a=9), actor_user_id=USER_ID)

        db_session.expire_all()
        reloaded = order_service.get_order(order.id)
        assert reloaded.inventory_deducted is True
        assert [i.quantity for i in reloaded.items] == [3, 2]
        assert len(_movements(order.id)) == 2

    def test_validation_failure_leaves_order_untouched(self, db_session, catalog):
        order = _create(catalog)

        with pytest.raises(OrderValidationError):
            order_service.update_order(order.id, [], actor_user_id=USER_ID)

        assert len(_movements(order.id)) == 2
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK - 3

    def test_update_missing_order(self, db_session, catalog):
        with pytest.raises(OrderNotFoundError):
            order_service.update_order(9999, _items(catalog), actor_user_id=USER_ID)

    def test_update_deleted_order(self, db_session, catalog):
        order = _create(catalog)
        order_service.delete_order(order.id, actor_user_id=USER_ID)

        with pytest.raises(OrderStateError):
            order_service.update_order(order.id, _items(catalog), actor_user_id=USER_ID)


class TestPastOrders:
    def test_past_order_must_move_to_today_or_later(self, db_session, catalog, clock):
        order = _create(catalog)
        clock.advance(1)

        with pytest.raises(OrderValidationError, match="today or a later date"):
            order_service.update_order(order.id, _items(catalog), actor_user_id=USER_ID)

    def test_closed_books_returns_stock_today(self, db_session, catalog, clock):
        order = _create(catalog, items=_items(catalog, qty_b=0))
        tomorrow = clock.advance(1)

        order_service.update_order(
            order.id, _items(catalog, qty_b=0), invoice_date=tomorrow, actor_user_id=USER_ID
        )

        assert _movements(order.id) == [
            (MOVEMENT_SALE, catalog["a"].id, -3, TODAY),
            (MOVEMENT_RETURN_INCOMING, catalog["a"].id, 3, tomorrow),
            (MOVEMENT_SALE, catalog["a"].id, -3, tomorrow),
        ]
        closed_day = ledger_service.get_snapshot(catalog["a"].id, TODAY)
        assert closed_day.reserved_quantity == 3
        assert closed_day.closing_stock == OPENING_STOCK - 3
        assert closing_stock(catalog["a"].id, tomorrow) == OPENING_STOCK - 3

    def test_open_books_reverses_original_day(self, app, db_session, catalog, clock, monkeypatch):
        monkeypatch.setitem(app.config, "REVERSAL_POLICY", "open_books")
        order = _create(catalog, items=_items(catalog, qty_b=0))
        tomorrow = clock.advance(1)

        order_service.update_order(
            order.id, _items(catalog, qty_b=0), invoice_date=tomorrow, actor_user_id=USER_ID
        )

        assert _movements(order.id) == [
            (MOVEMENT_SALE, catalog["a"].id, -3, TODAY),
            (MOVEMENT_SALE_REVERSAL, catalog["a"].id, 3, TODAY),
            (MOVEMENT_SALE, catalog["a"].id, -3, tomorrow),
        ]
        assert ledger_service.get_snapshot(catalog["a"].id, TODAY).reserved_quantity == 0
        assert closing_stock(catalog["a"].id, tomorrow) == OPENING_STOCK - 3

    def test_past_edit_allowed_by_flag(self, app, db_session, catalog, clock, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_PAST_ORDER_EDITS", True)
        order = _create(catalog)
        clock.advance(1)

        updated = order_service.update_order(order.id, _items(catalog, qty_a=1), actor_user_id=USER_ID)

        assert updated.invoice_date == TODAY
        assert updated.inventory_deducted is True
        assert ledger_service.net_quantity_for_order(order.id) == -3

    def test_past_order_cannot_be_deleted(self, db_session, catalog, clock):
        order = _create(catalog)
        clock.advance(1)

        with pytest.raises(OrderValidationError, match="cannot be deleted"):
            order_service.delete_order(order.id, actor_user_id=USER_ID)
        assert order_service.get_order(order.id).is_deleted is False

    def test_past_deletion_allowed_by_flag_returns_stock_today(self, app, db_session, catalog, clock, monkeypatch):
        monkeypatch.setitem(app.config, "ALLOW_PAST_ORDER_DELETION", True)
        order = _create(catalog, items=_items(catalog, qty_b=0))
        tomorrow = clock.advance(1)

        deleted = order_service.delete_order(order.id, actor_user_id=USER_ID)

        assert deleted.state == ORDER_STATE_DELETED
        assert _movements(order.id)[-1] == (MOVEMENT_RETURN_INCOMING, catalog["a"].id, 3, tomorrow)
        assert ledger_service.net_quantity_for_order(order.id) == 0


class TestDelete:
    def test_delete_applied_order_reverses(self, db_session, catalog):
        order = _create(catalog)

        deleted = order_service.delete_order(order.id, actor_user_id=USER_ID)

        assert deleted.is_deleted is True
        assert deleted.inventory_deducted is False
        assert deleted.deleted_by_user_id == USER_ID
        assert deleted.deleted_at is not None
        assert order_service.derive_state(deleted) == ORDER_STATE_DELETED
        assert ledger_service.net_quantity_for_order(order.id) == 0
        assert closing_stock(catalog["a"].id, TODAY) == OPENING_STOCK
        # soft delete keeps items and movements
        assert db_session.query(OrderItem).filter_by(order_id=order.id).count() == 2
        assert len(_movements(order.id)) == 4

    def test_delete_deferred_order_writes_no_movements(self, db_session, catalog):
        order = _create(catalog, invoice_date=TODAY + timedelta(days=2))

        order_service.delete_order(order.id, actor_user_id=USER_ID)

        assert _movements(order.id) == []

    def test_delete_twice_fails(self, db_session, catalog):
        order = _create(catalog)
        order_service.delete_order(order.id, actor_user_id=USER_ID)

        with pytest.raises(OrderStateError):
            order_service.delete_order(order.id, actor_user_id=USER_ID)
        assert len(_movements(order.id)) == 4

    def test_delete_missing_order(self, db_session):
        with pytest.raises(OrderNotFoundError):
            order_service.delete_order(12345, actor_user_id=USER_ID)

    def test_create_update_delete_nets_to_zero(self, db_session, catalog):
        order = _create(catalog)
        order_service.update_order(order.id, _items(catalog, qty_a=6, qty_b=1), actor_user_id=USER_ID)
        order_service.update_order(
            order.id, _items(catalog, qty_a=2, qty_b=0), invoice_date=TODAY + timedelta(days=1),
            actor_user_id=USER_ID,
        )
        order_service.update_order(
            order.id, _items(catalog, qty_a=4, qty_b=4), invoice_date=TODAY, actor_user_id=USER_ID
        )
        order_service.delete_order(order.id, actor_user_id=USER_ID)

        assert ledger_service.net_quantity_for_order(order.id) == 0
        for product in (catalog["a"], catalog["b"]):
            assert closing_stock(product.id, TODAY) == OPENING_STOCK
            assert ledger_service.get_ledger_balance(product.id) == OPENING_STOCK


class TestQueries:
    def test_get_order_missing(self, db_session):
        with pytest.raises(OrderNotFoundError):
            order_service.get_order(42)

    def test_list_orders_today_then_upcoming_then_past(self, db_session, catalog):
        offsets = [-5, 7, 0, -2, 1]
        by_offset = {}
        for offset in offsets:
            order = _create(catalog, items=_items(catalog, qty_a=1, qty_b=0),
                            invoice_date=TODAY + timedelta(days=offset))
            by_offset[offset] = order.id

        listed = [o.id for o in order_service.list_orders()]

        assert listed == [by_offset[o] for o in (0, 1, 7, -2, -5)]

    def test_list_orders_hides_deleted_by_default(self, db_session, catalog):
        kept = _create(catalog)
        gone = _create(catalog)
        order_service.delete_order(gone.id, actor_user_id=USER_ID)

        assert [o.id for o in order_service.list_orders()] == [kept.id]
        assert {o.id for o in order_service.list_orders(include_deleted=True)} == {kept.id, gone.id}

    def test_list_orders_filters(self, db_session, catalog):
        first = _create(catalog)
        _create(catalog, order_date=TODAY + timedelta(days=3))

        assert [o.id for o in order_service.list_orders(order_number="-001")] == [first.id]
        assert [o.id for o in order_service.list_orders(end_date=TODAY)] == [first.id]
        assert order_service.list_orders(customer_id=catalog["taxed_customer"].id) == []

    def test_to_dict_carries_state_and_items(self, db_session, catalog):
        data = _create(catalog).to_dict()

        assert data["state"] == ORDER_STATE_APPLIED
        assert data["invoice_date"] == TODAY.isoformat()
        assert len(data["items"]) == 2
