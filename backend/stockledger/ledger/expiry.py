"""
Expiry expansion.

A batch added with an expiry date becomes a dense day-by-day trail: every day
after the addition gets an entry (a zero-quantity placeholder where the caller
recorded nothing) until the cutover day, where the batch's remaining quantity
is written off as expired old stock. Days after today are never materialised.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import List, Optional

from ..time_utils import cutover_day, is_past_cutover, iter_days
from .entries import AUTO_NOTE_PREFIX, LedgerEntry, make_placeholder
from .monthly import ProductLedger


@dataclass
class ExpansionResult:
    batch_key: str
    created: List[LedgerEntry] = field(default_factory=list)
    expired_on: Optional[date] = None
    expired_quantity: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.created) or self.expired_on is not None


def _carry_note(source: LedgerEntry) -> str:
    return f"{AUTO_NOTE_PREFIX} carry forward from {source.entry_date.isoformat()}"


def _expiry_note(source: LedgerEntry) -> str:
    return (
        f"{AUTO_NOTE_PREFIX} expired from {source.entry_date.isoformat()} "
        f"(label {source.expire_date.isoformat()})"
    )


def expansion_window(source: LedgerEntry, now: datetime) -> Optional[tuple[date, date]]:
    """
    First and last day the expander may touch for this batch, or None.

    The window starts the day after the addition and ends at the cutover day
    once the cutover instant has passed, otherwise at today (never beyond the
    day before cutover).
    """
    start = source.entry_date + timedelta(days=1)
    cutover = cutover_day(source.expire_date)
    if is_past_cutover(source.expire_date, now):
        end = cutover
    else:
        end = min(now.date(), cutover - timedelta(days=1))
    if end < start:
        return None
    return start, end


def expand_batch(ledger: ProductLedger, source: LedgerEntry, now: datetime) -> ExpansionResult:
    """
    Fill the batch's trail up to the window end and apply its cutover once.

    Safe to call repeatedly: existing days are left alone and the cutover
    deduction is keyed by batch, so a second call is a no-op.
    """
    result = ExpansionResult(batch_key=source.batch_key)
    if not source.is_batch_source:
        return result

    window = expansion_window(source, now)
    if window is None:
        return result

    cutover = cutover_day(source.expire_date)
    key = source.batch_key

    for day in iter_days(*window):
        monthly = ledger.month_for_day(day, create=True)
        existing = monthly.entry_on(day)

        if day != cutover:
            if existing is None:
                placeholder = make_placeholder(day, ledger.balance_before(day), _carry_note(source))
                monthly.add(placeholder)
                ledger.mark_touched(monthly)
                result.created.append(placeholder)
            continue

        remaining = source.batch_remaining()
        if existing is None:
            existing = make_placeholder(day, ledger.balance_before(day), _expiry_note(source))
            existing.batch_number = source.batch_number
            monthly.add(existing)
            ledger.mark_touched(monthly)
            result.created.append(existing)
        if key not in existing.expiry_deductions and remaining > 0:
            if existing.is_auto_generated and not existing.expiry_deductions:
                existing.notes = _expiry_note(source)
                existing.batch_number = source.batch_number
            existing.expiry_deductions[key] = remaining
            existing.balance = max(0, existing.balance - remaining)
            ledger.mark_touched(monthly)
            result.expired_on = day
            result.expired_quantity = remaining
        break

    return result
