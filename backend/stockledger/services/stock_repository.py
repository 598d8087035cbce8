# Overview: Persistence for ledger aggregates; maps MonthlyStock/StockEntry rows to MonthlyLedger objects.

from __future__ import annotations

from typing import Optional

from ..extensions import db
from ..ledger import LedgerEntry, MonthlyLedger, ProductLedger
from ..models import MonthlyStock, StockEntry
from ..time_utils import utcnow
from .concurrency import ConcurrencyConflict

"""
Repository contract (authoritative)

- Loads and saves whole aggregates; there are no partial-field updates.
- MonthlyLedger.version mirrors MonthlyStock.version_id at load time. Saving a
  ledger whose version no longer matches raises ConcurrencyConflict; a
  concurrent UPDATE that slips past that check raises StaleDataError at flush.
- Entry rows are matched by id: rows missing from the aggregate are deleted,
  aggregate entries without an id are inserted. Deletes are flushed first so
  a placeholder replaced on the same day never trips the per-day unique key.
- Nothing here commits; the caller owns the transaction.
"""


def _entry_from_row(row: StockEntry) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        entry_date=row.entry_date,
        kind=row.kind,
        quantity=row.quantity,
        expire_date=row.expire_date,
        batch_number=row.batch_number,
        notes=row.notes,
        reported_used_stock=row.reported_used_stock,
        reported_damage_stock=row.reported_damage_stock,
        reported_expired_old_stock=row.reported_expired_old_stock,
        expiry_deductions=dict(row.expiry_deductions or {}),
        carry_forward=row.carry_forward,
        stock_added=row.stock_added,
        used_stock=row.used_stock,
        expired_old_stock=row.expired_old_stock,
        expired_stock=row.expired_stock,
        damage_stock=row.damage_stock,
        balance=row.balance,
    )


def _copy_entry_to_row(entry: LedgerEntry, row: StockEntry) -> None:
    row.entry_date = entry.entry_date
    row.kind = entry.kind
    row.quantity = entry.quantity
    row.expire_date = entry.expire_date
    row.batch_number = entry.batch_number
    row.notes = entry.notes
    row.reported_used_stock = entry.reported_used_stock
    row.reported_damage_stock = entry.reported_damage_stock
    row.reported_expired_old_stock = entry.reported_expired_old_stock
    # New dict so the JSON column registers the change
    row.expiry_deductions = dict(entry.expiry_deductions)
    row.carry_forward = entry.carry_forward
    row.stock_added = entry.stock_added
    row.used_stock = entry.used_stock
    row.expired_old_stock = entry.expired_old_stock
    row.expired_stock = entry.expired_stock
    row.damage_stock = entry.damage_stock
    row.balance = entry.balance


def _ledger_from_row(row: MonthlyStock) -> MonthlyLedger:
    return MonthlyLedger(
        id=row.id,
        version=row.version_id,
        theater_id=row.theater_id,
        product_id=row.product_id,
        year=row.year,
        month=row.month,
        carry_forward=row.carry_forward,
        entries=[_entry_from_row(e) for e in row.entries],
    )


def load_monthly_ledger(theater_id: int, product_id: int, year: int, month: int) -> Optional[MonthlyLedger]:
    row = db.session.query(MonthlyStock).filter_by(
        theater_id=theater_id,
        product_id=product_id,
        year=year,
        month=month,
    ).first()
    return _ledger_from_row(row) if row else None


def load_product_ledger(theater_id: int, product_id: int) -> ProductLedger:
    """Every stored month of one (theater, product), oldest first."""
    rows = (
        db.session.query(MonthlyStock)
        .filter_by(theater_id=theater_id, product_id=product_id)
        .order_by(MonthlyStock.year.asc(), MonthlyStock.month.asc())
        .all()
    )
    return ProductLedger(
        theater_id=theater_id,
        product_id=product_id,
        months=[_ledger_from_row(r) for r in rows],
    )


def save_monthly_ledger(ledger: MonthlyLedger) -> MonthlyStock:
    """
    Write one aggregate back, replacing its stored entries and totals.

    Assigns ids to new entries and refreshes ledger.id / ledger.version.
    """
    if ledger.is_new:
        row = MonthlyStock(
            theater_id=ledger.theater_id,
            product_id=ledger.product_id,
            year=ledger.year,
            month=ledger.month,
        )
        db.session.add(row)
    else:
        row = db.session.get(MonthlyStock, ledger.id)
        if row is None:
            raise ConcurrencyConflict(
                f"monthly stock {ledger.year}-{ledger.month:02d} was deleted concurrently"
            )
        if row.version_id != ledger.version:
            raise ConcurrencyConflict(
                f"monthly stock {ledger.year}-{ledger.month:02d} changed since it was loaded "
                f"(version {ledger.version} -> {row.version_id})"
            )

    # Entries removed from the aggregate
    kept_ids = {e.id for e in ledger if e.id is not None}
    stale = [r for r in row.entries if r.id not in kept_ids]
    for r in stale:
        row.entries.remove(r)
    if stale:
        db.session.flush()

    rows_by_id = {r.id: r for r in row.entries}
    new_pairs = []
    for entry in ledger:
        if entry.id is None:
            entry_row = StockEntry()
            _copy_entry_to_row(entry, entry_row)
            row.entries.append(entry_row)
            new_pairs.append((entry, entry_row))
        else:
            entry_row = rows_by_id.get(entry.id)
            if entry_row is None:
                raise ConcurrencyConflict(f"stock entry {entry.id} was deleted concurrently")
            _copy_entry_to_row(entry, entry_row)

    row.carry_forward = ledger.carry_forward
    row.total_stock_added = ledger.total_stock_added
    row.total_used_stock = ledger.total_used_stock
    row.total_expired_stock = ledger.total_expired_stock
    row.total_expired_old_stock = ledger.total_expired_old_stock
    row.total_damage_stock = ledger.total_damage_stock
    row.closing_balance = ledger.closing_balance
    # Always dirty the parent so the version check and bump run on every save
    row.updated_at = utcnow()

    db.session.flush()

    for entry, entry_row in new_pairs:
        entry.id = entry_row.id
    ledger.id = row.id
    ledger.version = row.version_id
    return row


def save_product_ledger(ledger: ProductLedger) -> list[MonthlyStock]:
    """Persist every month the ledger marked as touched, oldest first."""
    saved = [save_monthly_ledger(m) for m in ledger.touched_months()]
    ledger.touched.clear()
    return saved

