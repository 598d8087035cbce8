"""
Balance recalculation for one month.

Deterministic fold over the month's entries in day order: each day opens at
the previous day's balance (the month's opening balance for the first day)
and closes at the balance its movement produces, clamped at zero.
"""
from __future__ import annotations

from .entries import apply_movement
from .monthly import MonthlyLedger


def recalculate_month(monthly: MonthlyLedger) -> bool:
    """
    Recompute carry_forward, buckets and balance of every entry in the month.

    Idempotent: a second run on the same state changes nothing.
    Returns True when any entry changed.
    """
    changed = False
    running = monthly.carry_forward
    for entry in monthly:
        if apply_movement(entry, running):
            changed = True
        running = entry.balance
    return changed
