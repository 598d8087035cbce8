"""
Monthly ledger aggregate and the per-product collection of months.

A MonthlyLedger owns one (theater, product, year, month) worth of entries,
held in an ordered map keyed by calendar day. A ProductLedger holds every
month of one (theater, product) in memory so that expansion and chain
resolution can cross month boundaries without touching storage.
"""
from __future__ import annotations

from bisect import bisect_left, insort
from datetime import date
from typing import Dict, Iterator, List, Optional, Tuple

from ..time_utils import day_after, month_key, month_name
from .entries import LedgerEntry


MonthKey = Tuple[int, int]


class MonthlyLedger:
    def __init__(
        self,
        *,
        theater_id: int,
        product_id: int,
        year: int,
        month: int,
        carry_forward: int = 0,
        id: Optional[int] = None,
        version: Optional[int] = None,
        entries: Optional[List[LedgerEntry]] = None,
    ):
        if not 1 <= month <= 12:
            raise ValueError(f"month out of range: {month}")
        self.theater_id = theater_id
        self.product_id = product_id
        self.year = year
        self.month = month
        self.carry_forward = carry_forward
        self.id = id
        self.version = version

        self._by_day: Dict[date, LedgerEntry] = {}
        self._days: List[date] = []
        for entry in entries or []:
            self.add(entry)

    def __repr__(self) -> str:
        return (
            f"<MonthlyLedger theater_id={self.theater_id} product_id={self.product_id} "
            f"{self.year}-{self.month:02d} entries={len(self._days)}>"
        )

    def __len__(self) -> int:
        return len(self._days)

    def __iter__(self) -> Iterator[LedgerEntry]:
        for day in self._days:
            yield self._by_day[day]

    @property
    def key(self) -> MonthKey:
        return self.year, self.month

    @property
    def month_name(self) -> str:
        return month_name(self.month)

    @property
    def is_new(self) -> bool:
        return self.id is None

    def contains_day(self, day: date) -> bool:
        return month_key(day) == self.key

    # -- ordered map -------------------------------------------------------

    def entries(self) -> List[LedgerEntry]:
        return list(self)

    def entry_on(self, day: date) -> Optional[LedgerEntry]:
        return self._by_day.get(day)

    def find(self, entry_id: int) -> Optional[LedgerEntry]:
        for entry in self._by_day.values():
            if entry.id == entry_id:
                return entry
        return None

    def add(self, entry: LedgerEntry) -> LedgerEntry:
        if not self.contains_day(entry.entry_date):
            raise ValueError(
                f"{entry.entry_date.isoformat()} does not belong to {self.year}-{self.month:02d}"
            )
        if entry.entry_date in self._by_day:
            raise ValueError(f"an entry already exists for {entry.entry_date.isoformat()}")
        self._by_day[entry.entry_date] = entry
        insort(self._days, entry.entry_date)
        return entry

    def remove(self, entry: LedgerEntry) -> None:
        current = self._by_day.get(entry.entry_date)
        if current is not entry:
            raise ValueError(f"entry for {entry.entry_date.isoformat()} is not part of this month")
        del self._by_day[entry.entry_date]
        self._days.pop(bisect_left(self._days, entry.entry_date))

    def clear(self) -> List[LedgerEntry]:
        removed = self.entries()
        self._by_day.clear()
        self._days.clear()
        return removed

    def entry_before(self, day: date) -> Optional[LedgerEntry]:
        idx = bisect_left(self._days, day)
        if idx == 0:
            return None
        return self._by_day[self._days[idx - 1]]

    def balance_before(self, day: date) -> int:
        """Closing balance of the last day before ``day`` (month opening if none)."""
        previous = self.entry_before(day)
        return previous.balance if previous else self.carry_forward

    # -- derived totals ----------------------------------------------------

    @property
    def total_stock_added(self) -> int:
        return sum(e.stock_added for e in self)

    @property
    def total_used_stock(self) -> int:
        return sum(e.used_stock for e in self)

    @property
    def total_expired_stock(self) -> int:
        return sum(e.expired_stock for e in self)

    @property
    def total_expired_old_stock(self) -> int:
        return sum(e.expired_old_stock for e in self)

    @property
    def total_damage_stock(self) -> int:
        return sum(e.damage_stock for e in self)

    @property
    def closing_balance(self) -> int:
        if not self._days:
            return self.carry_forward
        return self._by_day[self._days[-1]].balance


class ProductLedger:
    """
    Every stored month of one (theater, product), ordered by (year, month).

    touched records the months whose state changed since load so that only
    those are written back.
    """

    def __init__(self, *, theater_id: int, product_id: int, months: Optional[List[MonthlyLedger]] = None):
        self.theater_id = theater_id
        self.product_id = product_id
        self._months: Dict[MonthKey, MonthlyLedger] = {}
        self.touched: set[MonthKey] = set()
        for monthly in months or []:
            if (monthly.theater_id, monthly.product_id) != (theater_id, product_id):
                raise ValueError("month belongs to a different theater/product")
            self._months[monthly.key] = monthly

    def __iter__(self) -> Iterator[MonthlyLedger]:
        for key in sorted(self._months):
            yield self._months[key]

    def __len__(self) -> int:
        return len(self._months)

    def months(self) -> List[MonthlyLedger]:
        return list(self)

    def get(self, year: int, month: int) -> Optional[MonthlyLedger]:
        return self._months.get((year, month))

    def mark_touched(self, monthly: MonthlyLedger) -> None:
        self.touched.add(monthly.key)

    def touched_months(self) -> List[MonthlyLedger]:
        return [m for m in self if m.key in self.touched]

    def previous_month(self, year: int, month: int) -> Optional[MonthlyLedger]:
        """Latest stored month strictly before (year, month)."""
        earlier = [key for key in self._months if key < (year, month)]
        if not earlier:
            return None
        return self._months[max(earlier)]

    def opening_for(self, year: int, month: int) -> int:
        previous = self.previous_month(year, month)
        return previous.closing_balance if previous else 0

    def get_or_create(self, year: int, month: int) -> MonthlyLedger:
        monthly = self._months.get((year, month))
        if monthly is None:
            monthly = MonthlyLedger(
                theater_id=self.theater_id,
                product_id=self.product_id,
                year=year,
                month=month,
                carry_forward=self.opening_for(year, month),
            )
            self._months[monthly.key] = monthly
            self.touched.add(monthly.key)
        return monthly

    def month_for_day(self, day: date, *, create: bool = False) -> Optional[MonthlyLedger]:
        if create:
            return self.get_or_create(day.year, day.month)
        return self.get(day.year, day.month)

    def entry_on(self, day: date) -> Optional[LedgerEntry]:
        monthly = self.month_for_day(day)
        return monthly.entry_on(day) if monthly else None

    def balance_before(self, day: date) -> int:
        monthly = self.month_for_day(day)
        if monthly is None:
            return self.opening_for(day.year, day.month)
        return monthly.balance_before(day)

    def entries(self) -> Iterator[LedgerEntry]:
        for monthly in self:
            yield from monthly

    def batch_sources(self) -> List[LedgerEntry]:
        return [e for e in self.entries() if e.is_batch_source]

    def forget_batch(self, batch_key: str) -> int:
        """Drop every recorded cutover deduction for a batch. Returns how many were dropped."""
        dropped = 0
        for monthly in self:
            for entry in monthly:
                if batch_key in entry.expiry_deductions:
                    del entry.expiry_deductions[batch_key]
                    self.touched.add(monthly.key)
                    dropped += 1
        return dropped

    @property
    def closing_balance(self) -> int:
        months = self.months()
        return months[-1].closing_balance if months else 0

    def balance_as_of(self, day: date) -> int:
        """Closing balance at the end of ``day``; later entries are ignored."""
        return self.balance_before(day_after(day))
