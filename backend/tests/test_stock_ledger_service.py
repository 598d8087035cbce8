# Overview: Pytest coverage for the stock ledger service façade and its persistence.

"""
Stock Ledger Service Tests

Every operation runs the full pipeline (load -> sweep -> mutate -> expand ->
recalculate -> save -> commit -> sync) against in-memory SQLite with a fixed
clock, then checks both the returned view and what was stored.

Test Coverage:
- record_movement: insert, merge, placeholder conversion, conflicts, validation
- update_movement / delete_movement: ripple, moves, batch changes
- regenerate_month / clear_month
- get_month_view: sweep on read, transient months, low-stock flag, chain repair
- run_sweep, retry, optimistic version checks and per-product locking
"""

import threading
from datetime import date, datetime

import pytest
from sqlalchemy.orm.exc import StaleDataError

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import MonthlyStock, Product, StockEntry
from stockledger.services import stock_ledger_service
from stockledger.services.concurrency import (
    ConcurrencyConflict,
    _lock_for,
    product_key_lock,
    run_with_retry,
)
from stockledger.services.stock_repository import load_monthly_ledger, save_monthly_ledger
from stockledger.validation import MAX_MOVEMENT_QUANTITY, ConflictError, NotFoundError, ValidationError


def record(product, now, **payload):
    return stock_ledger_service.record_movement(
        theater_id=product.theater_id,
        product_id=product.id,
        payload=payload,
        now=now,
    )


def entry_row(day: date) -> StockEntry:
    return db.session.query(StockEntry).filter_by(entry_date=day).one()


def view_days(view: dict) -> list[str]:
    return [e["date"] for e in view["entries"]]


class TestRecordMovement:
    """record_movement end to end."""

    def test_sale_after_addition_syncs_current_stock(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        result = record(product, now, date="2024-03-03", type="sold", quantity=30)

        assert result.entry.kind == "SOLD"
        assert result.entry.carry_forward == 100
        assert result.entry.balance == 70
        assert result.current_stock == 70
        assert result.warnings == []

        month = db_session.query(MonthlyStock).one()
        assert month.closing_balance == 70
        assert month.total_stock_added == 100
        assert month.total_used_stock == 30
        assert db_session.query(StockEntry).count() == 2
        assert db_session.get(Product, product.id).current_stock == 70

    def test_expired_batch_is_expanded_on_record(self, db_session, product, now):
        result = record(product, now, date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")

        assert view_days(result.view) == [f"2024-03-0{i}" for i in range(1, 7)]
        last = result.view["entries"][-1]
        assert last["expired_old_stock"] == 100
        assert last["balance"] == 0
        assert last["auto_generated"] is True
        assert result.current_stock == 0
        assert entry_row(date(2024, 3, 6)).expiry_deductions == {"2024-03-01#": 100}

    def test_future_dated_entry_is_stored_but_hidden(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        result = record(product, now, date="2024-03-25", type="ADDED", quantity=10)

        assert view_days(result.view) == ["2024-03-01"]
        assert result.current_stock == 100
        assert db_session.query(StockEntry).count() == 2
        assert db_session.get(Product, product.id).current_stock == 100

    def test_same_day_same_kind_merges(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        record(product, now, date="2024-03-03", type="SOLD", quantity=10, notes="matinee")
        result = record(product, now, date="2024-03-03", type="SOLD", quantity=5, notes="evening")

        assert result.entry.quantity == 15
        assert result.entry.balance == 85
        assert result.entry.notes == "matinee; evening"
        assert db_session.query(StockEntry).count() == 2

    def test_merge_that_cancels_an_adjustment_is_rejected(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        record(product, now, date="2024-03-02", type="ADJUSTMENT", quantity=5)

        with pytest.raises(ValidationError) as exc:
            record(product, now, date="2024-03-02", type="ADJUSTMENT", quantity=-5)
        assert "non-zero" in str(exc.value)

        adjustment = entry_row(date(2024, 3, 2))
        assert adjustment.quantity == 5
        assert db_session.get(Product, product.id).current_stock == 105

        result = stock_ledger_service.update_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=adjustment.id,
            patch={"notes": "recount"},
            now=now,
        )
        assert result.entry.notes == "recount"
        assert result.entry.quantity == 5

    def test_merge_cannot_exceed_the_movement_limit(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=MAX_MOVEMENT_QUANTITY)

        with pytest.raises(ValidationError) as exc:
            record(product, now, date="2024-03-01", type="ADDED", quantity=1)
        assert "cannot exceed" in str(exc.value)

        assert entry_row(date(2024, 3, 1)).quantity == MAX_MOVEMENT_QUANTITY
        assert db_session.get(Product, product.id).current_stock == MAX_MOVEMENT_QUANTITY

    def test_datetime_string_lands_on_its_calendar_day(self, db_session, product, now):
        result = record(product, now, date="2024-03-01T18:30:00Z", type="ADDED", quantity=10)

        assert result.entry.entry_date == date(2024, 3, 1)
        assert view_days(result.view) == ["2024-03-01"]

    def test_same_day_different_kind_conflicts(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        record(product, now, date="2024-03-03", type="SOLD", quantity=10)

        with pytest.raises(ConflictError):
            record(product, now, date="2024-03-03", type="DAMAGED", quantity=2)

        assert entry_row(date(2024, 3, 3)).kind == "SOLD"
        assert db_session.get(Product, product.id).current_stock == 90

    def test_recording_on_a_placeholder_converts_it(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")
        placeholder_id = entry_row(date(2024, 3, 3)).id

        result = record(product, now, date="2024-03-03", type="SOLD", quantity=20)

        assert result.entry.id == placeholder_id
        assert result.entry.is_auto_generated is False
        assert result.entry.balance == 80
        assert db_session.query(StockEntry).count() == 6
        # Cutover already wrote off the whole batch; stock cannot go below zero
        assert result.current_stock == 0

    @pytest.mark.parametrize("payload,message", [
        ({"type": "SOLD", "quantity": 5}, "Missing required fields: date"),
        ({"date": "2024-03-03", "quantity": 2}, "type is required"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 0}, "quantity must be > 0"),
        ({"date": "2024-03-03", "type": "ADJUSTMENT", "quantity": 0}, "non-zero"),
        ({"date": "2024-03-03", "type": "STOLEN", "quantity": 2}, "type must be one of"),
        ({"date": "03/03/2024", "type": "SOLD", "quantity": 2}, "ISO-8601 date"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 1.5}, "not a decimal"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": True}, "must be an integer"),
        ({"date": True, "type": "SOLD", "quantity": 2}, "ISO-8601 date"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 2, "price": 3}, "Field not allowed: price"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 2, "expire_date": "2024-03-09"},
         "expire_date can only be set"),
        ({"date": "2024-03-03", "type": "ADDED", "quantity": 2, "expire_date": "2024-03-01"},
         "cannot be before"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 2, "used_stock": 1},
         "can only be reported with ADDED or RETURNED"),
        ({"date": "2024-03-03", "type": "SOLD", "quantity": 2, "notes": "Auto: sneaky"}, "reserved"),
    ])
    def test_invalid_payload_writes_nothing(self, db_session, product, now, payload, message):
        with pytest.raises(ValidationError) as exc:
            record(product, now, **payload)

        assert message in str(exc.value)
        assert db_session.query(MonthlyStock).count() == 0

    def test_missing_product_is_a_warning_not_a_failure(self, db_session, now):
        result = stock_ledger_service.record_movement(
            theater_id=1,
            product_id=999,
            payload={"date": "2024-03-01", "type": "ADDED", "quantity": 10},
            now=now,
        )

        assert len(result.warnings) == 1
        assert result.warnings[0].product_id == 999
        assert result.to_dict()["warnings"][0]["type"] == "downstream_sync"
        assert db_session.query(MonthlyStock).count() == 1
        assert result.view["product"] is None


class TestUpdateMovement:
    """update_movement end to end."""

    def test_editing_an_early_addition_ripples_forward(self, db_session, product, now):
        first = record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        record(product, now, date="2024-03-10", type="SOLD", quantity=10)

        result = stock_ledger_service.update_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=first.entry.id,
            patch={"quantity": 150},
            now=now,
        )

        day10 = entry_row(date(2024, 3, 10))
        assert day10.carry_forward == 150
        assert day10.balance == 140
        assert result.current_stock == 140
        assert db_session.get(Product, product.id).current_stock == 140

    def test_moving_an_entry_within_the_month(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        sale = record(product, now, date="2024-03-03", type="SOLD", quantity=10)

        result = stock_ledger_service.update_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=sale.entry.id,
            patch={"date": "2024-03-05"},
            now=now,
        )

        assert view_days(result.view) == ["2024-03-01", "2024-03-05"]
        assert result.entry.id == sale.entry.id
        assert result.current_stock == 90

    def test_moving_onto_a_real_entry_conflicts(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        sale = record(product, now, date="2024-03-03", type="SOLD", quantity=10)

        with pytest.raises(ConflictError):
            stock_ledger_service.update_movement(
                theater_id=product.theater_id,
                product_id=product.id,
                year=2024,
                month=3,
                entry_id=sale.entry.id,
                patch={"date": "2024-03-01"},
                now=now,
            )

        assert entry_row(date(2024, 3, 3)).quantity == 10

    def test_moving_an_entry_into_another_month(self, db_session, product, now):
        record(product, now, date="2024-02-20", type="ADDED", quantity=100)
        sale = record(product, now, date="2024-03-03", type="SOLD", quantity=10)

        result = stock_ledger_service.update_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=sale.entry.id,
            patch={"date": "2024-02-25"},
            now=now,
        )

        assert result.entry.entry_date == date(2024, 2, 25)
        assert result.view["entries"] == []
        assert result.view["statistics"]["opening_balance"] == 90
        assert db_session.query(StockEntry).count() == 2
        feb = db_session.query(MonthlyStock).filter_by(month=2).one()
        assert feb.closing_balance == 90

    def test_changing_a_batch_quantity_reapplies_its_expiry(self, db_session, product, now):
        added = record(product, now, date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")

        stock_ledger_service.update_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=added.entry.id,
            patch={"quantity": 60},
            now=now,
        )

        day6 = entry_row(date(2024, 3, 6))
        assert day6.expiry_deductions == {"2024-03-01#": 60}
        assert day6.expired_old_stock == 60
        assert entry_row(date(2024, 3, 5)).balance == 60

    def test_invalid_patch_is_rejected(self, db_session, product, now):
        sale = record(product, now, date="2024-03-03", type="SOLD", quantity=10)

        for patch in ({"quantity": -5}, {"bogus": 1}, {"type": "EXPIRED", "used_stock": 3}):
            with pytest.raises(ValidationError):
                stock_ledger_service.update_movement(
                    theater_id=product.theater_id,
                    product_id=product.id,
                    year=2024,
                    month=3,
                    entry_id=sale.entry.id,
                    patch=patch,
                    now=now,
                )

        assert entry_row(date(2024, 3, 3)).quantity == 10

    def test_unknown_entry_or_month_is_not_found(self, db_session, product, now):
        record(product, now, date="2024-03-03", type="ADDED", quantity=10)

        with pytest.raises(NotFoundError):
            stock_ledger_service.update_movement(
                theater_id=product.theater_id, product_id=product.id,
                year=2024, month=3, entry_id=9999, patch={"quantity": 1}, now=now,
            )
        with pytest.raises(NotFoundError):
            stock_ledger_service.update_movement(
                theater_id=product.theater_id, product_id=product.id,
                year=2023, month=1, entry_id=1, patch={"quantity": 1}, now=now,
            )


class TestDeleteMovement:
    """delete_movement end to end."""

    def test_deleting_a_sale_restores_stock(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        sale = record(product, now, date="2024-03-03", type="SOLD", quantity=30)

        result = stock_ledger_service.delete_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=sale.entry.id,
            now=now,
        )

        assert result.current_stock == 100
        assert db_session.query(StockEntry).count() == 1
        assert db_session.get(Product, product.id).current_stock == 100

    def test_deleting_a_batch_drops_its_expiry(self, db_session, product, now):
        added = record(product, now, date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")
        record(product, now, date="2024-03-10", type="ADDED", quantity=40)

        result = stock_ledger_service.delete_movement(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            entry_id=added.entry.id,
            now=now,
        )

        assert entry_row(date(2024, 3, 6)).expiry_deductions == {}
        assert result.current_stock == 40

    def test_deleting_an_unknown_entry_is_not_found(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)

        with pytest.raises(NotFoundError):
            stock_ledger_service.delete_movement(
                theater_id=product.theater_id, product_id=product.id,
                year=2024, month=3, entry_id=424242, now=now,
            )


class TestRegenerateAndClear:
    """regenerate_month and clear_month."""

    def test_regenerate_rebuilds_placeholders(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")
        db_session.delete(entry_row(date(2024, 3, 3)))
        db_session.commit()

        result = stock_ledger_service.regenerate_month(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            now=now,
        )

        assert result.count == 5
        assert view_days(result.view) == [f"2024-03-0{i}" for i in range(1, 7)]
        assert result.view["entries"][-1]["expired_old_stock"] == 100
        assert db_session.query(StockEntry).count() == 6

    def test_regenerate_unknown_month_is_not_found(self, db_session, product, now):
        with pytest.raises(NotFoundError):
            stock_ledger_service.regenerate_month(
                theater_id=product.theater_id, product_id=product.id, year=2024, month=3, now=now,
            )

    def test_clear_month_removes_every_entry(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        record(product, now, date="2024-03-03", type="SOLD", quantity=30)

        result = stock_ledger_service.clear_month(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            now=now,
        )

        assert result.count == 2
        assert result.view["entries"] == []
        assert result.current_stock == 0
        assert db_session.query(StockEntry).count() == 0
        assert db_session.query(MonthlyStock).one().closing_balance == 0
        assert db_session.get(Product, product.id).current_stock == 0

    def test_clear_month_keeps_earlier_batches_reaching_in(self, db_session, product, now):
        record(product, now, date="2024-02-27", type="ADDED", quantity=100, expire_date="2024-03-02")
        record(product, now, date="2024-03-10", type="SOLD", quantity=10)

        result = stock_ledger_service.clear_month(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            now=now,
        )

        assert result.count == 4
        assert view_days(result.view) == ["2024-03-01", "2024-03-02", "2024-03-03"]
        assert result.view["entries"][-1]["expired_old_stock"] == 100
        assert result.current_stock == 0


class TestMonthView:
    """get_month_view."""

    def test_view_applies_expiries_that_came_due(self, db_session, product):
        record(product, datetime(2024, 3, 3, 9, 0),
               date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")
        assert db_session.get(Product, product.id).current_stock == 100

        view = stock_ledger_service.get_month_view(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=3,
            now=datetime(2024, 3, 20, 12, 0),
        )

        assert len(view["entries"]) == 6
        assert view["statistics"]["total_added"] == 100
        assert view["statistics"]["expired_old_stock"] == 100
        assert view["statistics"]["closing_balance"] == 0
        assert view["period"] == {"year": 2024, "month": 3, "month_name": "March"}
        assert view["current_stock"] == 0
        assert db_session.get(Product, product.id).current_stock == 0

    def test_unstored_month_is_shown_but_not_created(self, db_session, product, now):
        record(product, now, date="2024-02-10", type="ADDED", quantity=50)

        view = stock_ledger_service.get_month_view(
            theater_id=product.theater_id,
            product_id=product.id,
            year=2024,
            month=4,
            now=now,
        )

        assert view["entries"] == []
        assert view["statistics"]["opening_balance"] == 50
        assert view["statistics"]["closing_balance"] == 50
        assert view["period"]["month_name"] == "April"
        assert db_session.query(MonthlyStock).count() == 1

    def test_low_stock_flag_uses_configured_threshold(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=15)
        view = stock_ledger_service.get_month_view(
            theater_id=product.theater_id, product_id=product.id, year=2024, month=3, now=now,
        )
        assert view["product"]["low_stock_alert"] == 5
        assert view["product"]["is_low_stock"] is False

        record(product, now, date="2024-03-02", type="SOLD", quantity=11)
        view = stock_ledger_service.get_month_view(
            theater_id=product.theater_id, product_id=product.id, year=2024, month=3, now=now,
        )
        assert view["product"]["is_low_stock"] is True

    def test_low_stock_flag_prefers_product_alert(self, db_session, low_alert_product, now):
        record(low_alert_product, now, date="2024-03-01", type="ADDED", quantity=15)
        view = stock_ledger_service.get_month_view(
            theater_id=low_alert_product.theater_id,
            product_id=low_alert_product.id,
            year=2024,
            month=3,
            now=now,
        )
        assert view["product"]["low_stock_alert"] == 20
        assert view["product"]["is_low_stock"] is True

    def test_stale_opening_balance_is_repaired_on_read(self, db_session, product, now):
        record(product, now, date="2024-02-01", type="ADDED", quantity=80)
        record(product, now, date="2024-03-02", type="SOLD", quantity=10)

        march = db_session.query(MonthlyStock).filter_by(month=3).one()
        march.carry_forward = 0
        for row in march.entries:
            row.carry_forward = 0
            row.balance = 0
        db_session.commit()

        view = stock_ledger_service.get_month_view(
            theater_id=product.theater_id, product_id=product.id, year=2024, month=3, now=now,
        )

        assert view["statistics"]["opening_balance"] == 80
        assert view["entries"][0]["balance"] == 70
        assert db_session.query(MonthlyStock).filter_by(month=3).one().carry_forward == 80
        assert stock_ledger_service.check_chain(theater_id=product.theater_id, product_id=product.id) == []


class TestSweepAndConcurrency:
    """run_sweep, retries, the optimistic version check and the per-product lock."""

    def test_run_sweep_reports_expiries_once(self, db_session, product):
        record(product, datetime(2024, 3, 3, 9, 0),
               date="2024-03-01", type="ADDED", quantity=100, expire_date="2024-03-05")

        summary = stock_ledger_service.run_sweep(
            theater_id=product.theater_id, product_id=product.id, now=datetime(2024, 3, 20),
        )
        assert summary["expired"] == [{"batch": "2024-03-01#", "expired_on": "2024-03-06", "quantity": 100}]
        assert summary["placeholders_created"] == 3
        assert summary["current_stock"] == 0

        again = stock_ledger_service.run_sweep(
            theater_id=product.theater_id, product_id=product.id, now=datetime(2024, 3, 20),
        )
        assert again["expired"] == []
        assert again["placeholders_created"] == 0
        assert again["months_repaired"] == []

    def test_recalculate_product_reports_breaks_then_repairs(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        db_session.query(MonthlyStock).one().carry_forward = 7
        db_session.commit()

        summary = stock_ledger_service.recalculate_product(
            theater_id=product.theater_id, product_id=product.id, now=now,
        )

        assert any("opens at 7" in b for b in summary["breaks_found"])
        assert summary["months_repaired"] == ["2024-03"]
        assert stock_ledger_service.check_chain(theater_id=product.theater_id, product_id=product.id) == []

    def test_list_ledger_keys(self, db_session, product, low_alert_product, now):
        record(product, now, date="2024-02-01", type="ADDED", quantity=1)
        record(product, now, date="2024-03-01", type="ADDED", quantity=1)
        record(low_alert_product, now, date="2024-03-01", type="ADDED", quantity=1)

        assert stock_ledger_service.list_ledger_keys() == [
            (product.theater_id, product.id),
            (low_alert_product.theater_id, low_alert_product.id),
        ]

    def test_run_with_retry_recovers_from_a_stale_write(self, db_session):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("row changed underneath us")
            return "ok"

        assert run_with_retry(flaky) == "ok"
        assert len(calls) == 2

    def test_run_with_retry_gives_up(self, db_session):
        calls = []

        def always_stale():
            calls.append(1)
            raise StaleDataError("row changed underneath us")

        with pytest.raises(ConcurrencyConflict):
            run_with_retry(always_stale, attempts=3, backoff_base=0)
        assert len(calls) == 3

    def test_save_rejects_a_stale_version(self, db_session, product, now):
        record(product, now, date="2024-03-01", type="ADDED", quantity=100)
        ledger = load_monthly_ledger(product.theater_id, product.id, 2024, 3)

        row = db_session.query(MonthlyStock).one()
        row.carry_forward = 5
        db_session.commit()

        with pytest.raises(ConcurrencyConflict):
            save_monthly_ledger(ledger)
        db_session.rollback()

    def test_lock_is_shared_per_product_and_separate_across_products(self):
        first = _lock_for(1, 101)
        again = _lock_for(1, 101)
        other_product = _lock_for(1, 102)
        other_theater = _lock_for(2, 101)

        assert first is again
        assert first is not other_product
        assert first is not other_theater

        with product_key_lock(1, 101):
            assert first.locked()
            assert not other_product.locked()
        assert not first.locked()

    def test_concurrent_writers_on_one_product_both_land(self, tmp_path):
        # File-backed so each thread gets its own SQLite connection
        threaded_app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'threads.sqlite3'}",
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'STOCK_RETRY_BACKOFF_SECONDS': 0,
        })
        with threaded_app.app_context():
            db.create_all()
            soda = Product(theater_id=1, name="Soda Medium", current_stock=0)
            db.session.add(soda)
            db.session.commit()
            product_id = soda.id

        now = datetime(2024, 3, 20, 12, 0)
        start = threading.Barrier(2, timeout=10)
        errors = []

        def writer(day, quantity):
            with threaded_app.app_context():
                start.wait()
                try:
                    stock_ledger_service.record_movement(
                        theater_id=1,
                        product_id=product_id,
                        payload={"date": day, "type": "ADDED", "quantity": quantity},
                        now=now,
                    )
                except Exception as exc:  # surfaced through the assertion below
                    errors.append(exc)

        threads = [
            threading.Thread(target=writer, args=("2024-03-01", 40)),
            threading.Thread(target=writer, args=("2024-03-02", 2)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert errors == []
        with threaded_app.app_context():
            month = db.session.query(MonthlyStock).one()
            assert month.closing_balance == 42
            assert month.total_stock_added == 42
            assert db.session.query(StockEntry).count() == 2
            assert db.session.get(Product, product_id).current_stock == 42
            db.session.remove()
            db.engine.dispose()
