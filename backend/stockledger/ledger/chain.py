"""
Carry-forward chain across the months of one product.

Each month opens at the closing balance of the stored month before it
(0 for the first). Walking the months oldest first and recalculating each one
before moving on lets a correction in January ripple through every later month.
"""
from __future__ import annotations

from typing import List

from .monthly import MonthlyLedger, ProductLedger
from .recalculator import recalculate_month


def resolve_chain(ledger: ProductLedger) -> List[MonthlyLedger]:
    """
    Enforce month-to-month continuity and recalculate every month.

    Months whose opening balance or entries changed are marked touched on the
    ProductLedger and returned, oldest first.
    """
    changed: List[MonthlyLedger] = []
    expected_opening = 0
    for monthly in ledger:
        month_changed = False
        if monthly.carry_forward != expected_opening:
            monthly.carry_forward = expected_opening
            month_changed = True
        if recalculate_month(monthly):
            month_changed = True
        if month_changed:
            ledger.mark_touched(monthly)
            changed.append(monthly)
        expected_opening = monthly.closing_balance
    return changed


def find_chain_breaks(ledger: ProductLedger) -> List[str]:
    """
    Describe every continuity violation without repairing anything.

    Used by the CLI and tests to prove that resolve_chain left nothing behind.
    """
    problems: List[str] = []
    expected_opening = 0
    for monthly in ledger:
        label = f"{monthly.year}-{monthly.month:02d}"
        if monthly.carry_forward != expected_opening:
            problems.append(
                f"{label}: opens at {monthly.carry_forward}, previous month closed at {expected_opening}"
            )
        running = monthly.carry_forward
        for entry in monthly:
            if entry.carry_forward != running:
                problems.append(
                    f"{entry.entry_date.isoformat()}: carry_forward {entry.carry_forward} != previous balance {running}"
                )
            if entry.balance < 0:
                problems.append(f"{entry.entry_date.isoformat()}: negative balance {entry.balance}")
            running = entry.balance
        expected_opening = monthly.closing_balance
    return problems
