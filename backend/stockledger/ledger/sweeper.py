"""
Auto-expire sweep over every month of one product.

The sweep is a pure function over an in-memory ProductLedger: it expands every
expiring batch up to "now", applies any cutover that has come due, then
restores chain continuity and recalculates. Persistence happens around it,
never inside it.

Running it twice in a row leaves the ledger unchanged the second time.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List

from .chain import resolve_chain
from .expiry import ExpansionResult, expand_batch
from .monthly import MonthlyLedger, ProductLedger


@dataclass
class SweepResult:
    expanded: List[ExpansionResult] = field(default_factory=list)
    repaired: List[MonthlyLedger] = field(default_factory=list)

    @property
    def expired(self) -> List[ExpansionResult]:
        return [r for r in self.expanded if r.expired_on is not None]

    @property
    def created_count(self) -> int:
        return sum(len(r.created) for r in self.expanded)

    @property
    def changed(self) -> bool:
        return bool(self.repaired) or any(r.changed for r in self.expanded)


def expand_all(ledger: ProductLedger, now: datetime) -> List[ExpansionResult]:
    """Run the expiry expander for every batch source, oldest first."""
    results = []
    for source in ledger.batch_sources():
        result = expand_batch(ledger, source, now)
        if result.changed:
            results.append(result)
    return results


def sweep(ledger: ProductLedger, now: datetime) -> SweepResult:
    result = SweepResult()
    result.expanded = expand_all(ledger, now)
    result.repaired = resolve_chain(ledger)
    return result


def strip_generated(monthly: MonthlyLedger) -> int:
    """
    Remove every auto-generated entry and every recorded cutover deduction.

    Returns the number of entries removed.
    """
    removed = 0
    for entry in monthly.entries():
        if entry.is_auto_generated:
            monthly.remove(entry)
            removed += 1
        else:
            entry.expiry_deductions.clear()
    return removed


def regenerate(ledger: ProductLedger, monthly: MonthlyLedger, now: datetime) -> int:
    """
    Rebuild one month's generated entries from its real entries.

    Strips the month, then re-expands every batch of the product (batches from
    earlier months can reach into this one) and recalculates.
    """
    removed = strip_generated(monthly)
    ledger.mark_touched(monthly)
    sweep(ledger, now)
    return removed
