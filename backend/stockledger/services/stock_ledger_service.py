# Overview: Service-layer façade for the perishable-stock ledger; orchestrates sweep, mutation, recalculation and persistence.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from ..extensions import db
from ..ledger import (
    LedgerEntry,
    MonthlyLedger,
    ProductLedger,
    SweepResult,
    expand_all,
    find_chain_breaks,
    regenerate,
    resolve_chain,
    sweep,
)
from ..models import MonthlyStock, StockEntry
from ..time_utils import utcnow
from ..validation import (
    ConflictError,
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    enforce_rules_stock_movement,
    validate_payload,
)
from . import product_stock_service
from .concurrency import product_key_lock, run_with_retry
from .product_stock_service import DownstreamSyncWarning
from .stock_repository import load_product_ledger, save_product_ledger

"""
Stock Ledger Invariants (authoritative)

Pipeline for every call, under the (theater, product) lock:
  load all months -> sweep -> mutation -> expand batches -> chain + recalc
  -> save touched months -> commit -> sync product current stock.
A conflict anywhere before commit rolls back and re-runs the whole pipeline.

Ledger rules:
- At most one real entry per day. Recording onto a placeholder day converts
  the placeholder in place and keeps its expiry deductions. Recording onto a
  real entry merges when kind, expiry date and batch match; otherwise 409.
- Any change to a batch source drops that batch's cutover deduction so the
  expander re-applies it with the current remaining quantity.
- Moving an entry to another day leaves its deductions behind; the expander
  puts them back on the original day.
- Entries dated after today are stored but never shown.
- Product current stock is a best-effort copy. Failing to update it never
  undoes a committed ledger write; it is reported as a warning.
"""


_MOVEMENT_FIELDS = {
    "date",
    "type",
    "kind",
    "quantity",
    "expire_date",
    "batch_number",
    "notes",
    "used_stock",
    "damage_stock",
    "expired_old_stock",
}

_MOVEMENT_FIELD_MAP = {
    "date": "entry_date",
    "type": "kind",
    "used_stock": "reported_used_stock",
    "damage_stock": "reported_damage_stock",
    "expired_old_stock": "reported_expired_old_stock",
}

STOCK_MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields=_MOVEMENT_FIELDS,
    required_on_create={"date", "quantity"},
    field_map=_MOVEMENT_FIELD_MAP,
)

STOCK_MOVEMENT_PATCH_POLICY = ModelValidationPolicy(
    writable_fields=_MOVEMENT_FIELDS,
    field_map=_MOVEMENT_FIELD_MAP,
)

_ENTRY_FIELDS = (
    "entry_date",
    "kind",
    "quantity",
    "expire_date",
    "batch_number",
    "notes",
    "reported_used_stock",
    "reported_damage_stock",
    "reported_expired_old_stock",
)

_REPORTED_FIELDS = (
    "reported_used_stock",
    "reported_damage_stock",
    "reported_expired_old_stock",
)


@dataclass
class LedgerOutcome:
    """What one pipeline run produced, before it is shaped for a caller."""
    ledger: ProductLedger
    sweep: SweepResult
    entry: Optional[LedgerEntry] = None
    count: int = 0
    persisted: bool = False
    warnings: list[DownstreamSyncWarning] = field(default_factory=list)


@dataclass
class MovementResult:
    view: dict
    current_stock: int
    entry: Optional[LedgerEntry] = None
    count: Optional[int] = None
    warnings: list[DownstreamSyncWarning] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {
            "entry": self.entry.to_dict() if self.entry else None,
            "current_stock": self.current_stock,
            "month": self.view,
            "warnings": [w.to_dict() for w in self.warnings],
        }
        if self.count is not None:
            data["count"] = self.count
        return data


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

def _resolve_now(now: datetime | None) -> datetime:
    return now if now is not None else utcnow()


def _run_pipeline(
    theater_id: int,
    product_id: int,
    mutate: Callable[[ProductLedger], tuple[Optional[LedgerEntry], int]] | None,
    now: datetime,
) -> LedgerOutcome:
    def _op():
        ledger = load_product_ledger(theater_id, product_id)
        try:
            sweep_result = sweep(ledger, now)
            entry, count = (None, 0)
            if mutate is not None:
                entry, count = mutate(ledger)
                sweep_result.expanded.extend(expand_all(ledger, now))
                resolve_chain(ledger)
        except (ValidationError, ConflictError, NotFoundError):
            db.session.rollback()
            raise

        persisted = bool(ledger.touched)
        if persisted:
            save_product_ledger(ledger)
            db.session.commit()
        return LedgerOutcome(
            ledger=ledger,
            sweep=sweep_result,
            entry=entry,
            count=count,
            persisted=persisted,
        )

    with product_key_lock(theater_id, product_id):
        outcome = run_with_retry(_op)

        # Synced under the lock so racing writers land their copies in commit order.
        # Entries dated after today only count once their day arrives, so a plain
        # read can still find the product's copy out of date
        balance = outcome.ledger.balance_as_of(now.date())
        product = product_stock_service.get_product(product_id, theater_id)
        stale_copy = product is not None and product.current_stock != balance
        if outcome.persisted or stale_copy:
            warning = product_stock_service.sync_current_stock(product_id, theater_id, balance)
            if warning is not None:
                outcome.warnings.append(warning)

    for expired in outcome.sweep.expired:
        current_app.logger.info(
            "Expired batch %s of product %s (theater %s) on %s: %s units",
            expired.batch_key, product_id, theater_id,
            expired.expired_on.isoformat(), expired.expired_quantity,
        )
    return outcome


def _result(outcome: LedgerOutcome, year: int, month: int, now: datetime, *, count: int | None = None) -> MovementResult:
    return MovementResult(
        view=build_month_view(outcome.ledger, year, month, now),
        current_stock=outcome.ledger.balance_as_of(now.date()),
        entry=outcome.entry,
        count=count,
        warnings=outcome.warnings,
    )


# ---------------------------------------------------------------------------
# Entry helpers
# ---------------------------------------------------------------------------

def _fields_of(entry: LedgerEntry) -> dict:
    return {name: getattr(entry, name) for name in _ENTRY_FIELDS}


def _assign(entry: LedgerEntry, fields: dict) -> None:
    for name in _ENTRY_FIELDS:
        if name in fields:
            setattr(entry, name, fields[name])


def _can_merge(existing: LedgerEntry, fields: dict) -> bool:
    return (
        existing.kind == fields["kind"]
        and existing.expire_date == fields.get("expire_date")
        and (existing.batch_number or None) == (fields.get("batch_number") or None)
    )


def _merge_into(existing: LedgerEntry, fields: dict) -> None:
    """Fold a same-day movement into existing; the sum must itself be a valid movement."""
    merged = _fields_of(existing)
    merged["quantity"] = existing.quantity + fields["quantity"]
    for name in _REPORTED_FIELDS:
        incoming = fields.get(name)
        if incoming is None:
            continue
        merged[name] = (merged[name] or 0) + incoming
    if fields.get("notes"):
        combined = f"{existing.notes}; {fields['notes']}" if existing.notes else fields["notes"]
        merged["notes"] = combined[:255]

    enforce_rules_stock_movement(merged)
    _assign(existing, merged)


def _place_entry(ledger: ProductLedger, fields: dict) -> LedgerEntry:
    """Insert a validated movement, converting or merging a same-day entry."""
    day = fields["entry_date"]
    monthly = ledger.get_or_create(day.year, day.month)
    existing = monthly.entry_on(day)

    if existing is None:
        entry = LedgerEntry(**{name: fields.get(name) for name in _ENTRY_FIELDS})
        monthly.add(entry)
    elif existing.is_auto_generated:
        # Placeholder becomes the real entry; its expiry deductions stay on this day
        existing.notes = None
        _assign(existing, {name: fields.get(name) for name in _ENTRY_FIELDS})
        entry = existing
    elif _can_merge(existing, fields):
        batch_key = existing.batch_key if existing.is_batch_source else None
        _merge_into(existing, fields)
        if batch_key is not None:
            ledger.forget_batch(batch_key)
        entry = existing
    else:
        raise ConflictError(
            f"a {existing.kind} entry already exists on {day.isoformat()}; update it instead"
        )

    ledger.mark_touched(monthly)
    return entry


def _locate(ledger: ProductLedger, year: int, month: int, entry_id: int | None = None):
    monthly = ledger.get(year, month)
    if monthly is None:
        raise NotFoundError(f"no stock ledger for {year}-{month:02d}")
    if entry_id is None:
        return monthly, None
    entry = monthly.find(entry_id)
    if entry is None:
        raise NotFoundError(f"stock entry {entry_id} not found in {year}-{month:02d}")
    return monthly, entry


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def build_month_view(ledger: ProductLedger, year: int, month: int, now: datetime) -> dict:
    """
    Month view as shown to callers: entries up to today, totals and the
    product's resulting current stock.
    """
    today = now.date()
    monthly = ledger.get(year, month)
    if monthly is None:
        monthly = MonthlyLedger(
            theater_id=ledger.theater_id,
            product_id=ledger.product_id,
            year=year,
            month=month,
            carry_forward=ledger.opening_for(year, month),
        )

    entries = [e for e in monthly if e.entry_date <= today]
    current_stock = ledger.balance_as_of(today)

    product = product_stock_service.get_product(ledger.product_id, ledger.theater_id)
    threshold = product_stock_service.low_stock_threshold(product)
    product_block = None
    if product is not None:
        product_block = {
            **product.to_dict(),
            "current_stock": current_stock,
            "low_stock_alert": threshold,
            "is_low_stock": product_stock_service.is_low_stock(current_stock, threshold),
        }

    return {
        "theater_id": ledger.theater_id,
        "product_id": ledger.product_id,
        "entries": [e.to_dict() for e in entries],
        "current_stock": current_stock,
        "statistics": {
            "total_added": monthly.total_stock_added,
            "total_sold": monthly.total_used_stock,
            "total_expired": monthly.total_expired_stock,
            "expired_old_stock": monthly.total_expired_old_stock,
            "total_damaged": monthly.total_damage_stock,
            "opening_balance": monthly.carry_forward,
            "closing_balance": monthly.closing_balance,
        },
        "period": {
            "year": year,
            "month": month,
            "month_name": monthly.month_name,
        },
        "product": product_block,
    }


# ---------------------------------------------------------------------------
# Public operations
# ---------------------------------------------------------------------------

def record_movement(
    *,
    theater_id: int,
    product_id: int,
    payload: dict,
    now: datetime | None = None,
) -> MovementResult:
    """
    Record one day's movement.

    payload keys: date, type (or kind), quantity, and optionally expire_date,
    batch_number, notes and, for ADDED/RETURNED, same-day used_stock,
    damage_stock and expired_old_stock.

    Raises ValidationError before anything is written, ConflictError when the
    day already holds a different real entry.
    """
    now = _resolve_now(now)
    fields = validate_payload(
        model=StockEntry,
        payload=payload,
        policy=STOCK_MOVEMENT_POLICY,
        partial=False,
    )
    enforce_rules_stock_movement(fields)

    def _mutate(ledger: ProductLedger):
        return _place_entry(ledger, fields), 1

    outcome = _run_pipeline(theater_id, product_id, _mutate, now)
    day = fields["entry_date"]
    return _result(outcome, day.year, day.month, now)


def update_movement(
    *,
    theater_id: int,
    product_id: int,
    year: int,
    month: int,
    entry_id: int,
    patch: dict,
    now: datetime | None = None,
) -> MovementResult:
    """
    Apply a partial update to an entry and re-derive everything after it.

    Moving an entry into another month gives it a new id there.
    """
    now = _resolve_now(now)
    patch_fields = validate_payload(
        model=StockEntry,
        payload=patch,
        policy=STOCK_MOVEMENT_PATCH_POLICY,
        partial=True,
    )

    def _mutate(ledger: ProductLedger):
        monthly, entry = _locate(ledger, year, month, entry_id)

        merged = _fields_of(entry)
        merged.update(patch_fields)
        if entry.is_auto_generated and "notes" not in patch_fields:
            merged["notes"] = None
        enforce_rules_stock_movement(merged)

        if entry.is_batch_source:
            ledger.forget_batch(entry.batch_key)

        new_day = merged["entry_date"]
        if new_day != entry.entry_date:
            target = ledger.get_or_create(new_day.year, new_day.month)
            occupant = target.entry_on(new_day)
            if occupant is not None and not occupant.is_auto_generated:
                raise ConflictError(
                    f"a {occupant.kind} entry already exists on {new_day.isoformat()}"
                )
            monthly.remove(entry)
            ledger.mark_touched(monthly)
            entry.expiry_deductions = {}
            if occupant is not None:
                target.remove(occupant)
                entry.expiry_deductions = dict(occupant.expiry_deductions)
            if target is not monthly:
                entry.id = None
            _assign(entry, merged)
            target.add(entry)
            ledger.mark_touched(target)
        else:
            _assign(entry, merged)
            ledger.mark_touched(monthly)
        return entry, 1

    outcome = _run_pipeline(theater_id, product_id, _mutate, now)
    return _result(outcome, year, month, now)


def delete_movement(
    *,
    theater_id: int,
    product_id: int,
    year: int,
    month: int,
    entry_id: int,
    now: datetime | None = None,
) -> MovementResult:
    now = _resolve_now(now)

    def _mutate(ledger: ProductLedger):
        monthly, entry = _locate(ledger, year, month, entry_id)
        if entry.is_batch_source:
            ledger.forget_batch(entry.batch_key)
        monthly.remove(entry)
        ledger.mark_touched(monthly)
        return None, 1

    outcome = _run_pipeline(theater_id, product_id, _mutate, now)
    return _result(outcome, year, month, now)


def regenerate_month(
    *,
    theater_id: int,
    product_id: int,
    year: int,
    month: int,
    now: datetime | None = None,
) -> MovementResult:
    """Strip the month's auto-generated entries and rebuild them from real entries."""
    now = _resolve_now(now)

    def _mutate(ledger: ProductLedger):
        monthly, _ = _locate(ledger, year, month)
        return None, regenerate(ledger, monthly, now)

    outcome = _run_pipeline(theater_id, product_id, _mutate, now)
    return _result(outcome, year, month, now, count=outcome.count)


def clear_month(
    *,
    theater_id: int,
    product_id: int,
    year: int,
    month: int,
    now: datetime | None = None,
) -> MovementResult:
    """
    Remove every entry of one month.

    Batches that were added in the month are forgotten everywhere. Batches
    from earlier months still reach into it, so their placeholders come back.
    """
    now = _resolve_now(now)

    def _mutate(ledger: ProductLedger):
        monthly, _ = _locate(ledger, year, month)
        removed = monthly.clear()
        for entry in removed:
            if entry.is_batch_source:
                ledger.forget_batch(entry.batch_key)
        ledger.mark_touched(monthly)
        return None, len(removed)

    outcome = _run_pipeline(theater_id, product_id, _mutate, now)
    return _result(outcome, year, month, now, count=outcome.count)


def get_month_view(
    *,
    theater_id: int,
    product_id: int,
    year: int,
    month: int,
    now: datetime | None = None,
) -> dict:
    """Sweep, then return the month as of today. Never creates the month."""
    now = _resolve_now(now)
    outcome = _run_pipeline(theater_id, product_id, None, now)
    view = build_month_view(outcome.ledger, year, month, now)
    view["warnings"] = [w.to_dict() for w in outcome.warnings]
    return view


def run_sweep(*, theater_id: int, product_id: int, now: datetime | None = None) -> dict:
    now = _resolve_now(now)
    outcome = _run_pipeline(theater_id, product_id, None, now)
    return {
        "theater_id": theater_id,
        "product_id": product_id,
        "expired": [
            {
                "batch": r.batch_key,
                "expired_on": r.expired_on.isoformat(),
                "quantity": r.expired_quantity,
            }
            for r in outcome.sweep.expired
        ],
        "placeholders_created": outcome.sweep.created_count,
        "months_repaired": [f"{m.year}-{m.month:02d}" for m in outcome.sweep.repaired],
        "current_stock": outcome.ledger.balance_as_of(now.date()),
        "warnings": [w.to_dict() for w in outcome.warnings],
    }


def check_chain(*, theater_id: int, product_id: int) -> list[str]:
    """Continuity problems in stored state, without repairing anything."""
    return find_chain_breaks(load_product_ledger(theater_id, product_id))


def list_ledger_keys() -> list[tuple[int, int]]:
    """Every (theater_id, product_id) that has at least one stored month."""
    rows = (
        db.session.query(MonthlyStock.theater_id, MonthlyStock.product_id)
        .distinct()
        .order_by(MonthlyStock.theater_id, MonthlyStock.product_id)
        .all()
    )
    return [(theater_id, product_id) for theater_id, product_id in rows]


def recalculate_product(*, theater_id: int, product_id: int, now: datetime | None = None) -> dict:
    """
    Universal repair: report continuity breaks in stored state, then re-run
    the sweep, which rebuilds the chain and every derived bucket.
    """
    breaks = check_chain(theater_id=theater_id, product_id=product_id)
    summary = run_sweep(theater_id=theater_id, product_id=product_id, now=now)
    summary["breaks_found"] = breaks
    return summary
