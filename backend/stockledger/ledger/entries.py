"""
Ledger entries: one calendar day of stock movement for one product.

Pure data + bucket derivation. No I/O.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional


# Movement kinds
KIND_ADDED = "ADDED"
KIND_RETURNED = "RETURNED"
KIND_SOLD = "SOLD"
KIND_EXPIRED = "EXPIRED"
KIND_DAMAGED = "DAMAGED"
KIND_ADJUSTMENT = "ADJUSTMENT"

VALID_KINDS = frozenset({
    KIND_ADDED,
    KIND_RETURNED,
    KIND_SOLD,
    KIND_EXPIRED,
    KIND_DAMAGED,
    KIND_ADJUSTMENT,
})

# Kinds that bring a physical batch into stock and may carry an expiry date
BATCH_KINDS = frozenset({KIND_ADDED, KIND_RETURNED})

# Notes prefix marking entries synthesized by the expiry expander
AUTO_NOTE_PREFIX = "Auto:"


def batch_key_for(added_on: date, batch_number: Optional[str]) -> str:
    """Identity of a physical batch within one product ledger."""
    return f"{added_on.isoformat()}#{batch_number or ''}"


@dataclass
class Buckets:
    stock_added: int = 0
    used_stock: int = 0
    expired_old_stock: int = 0
    expired_stock: int = 0
    damage_stock: int = 0

    def apply(self, carry_forward: int) -> int:
        """Closing balance for a day opening at carry_forward, clamped at zero."""
        balance = (
            carry_forward
            + self.stock_added
            - self.used_stock
            - self.expired_old_stock
            - self.expired_stock
            - self.damage_stock
        )
        return max(0, balance)


@dataclass
class LedgerEntry:
    """
    One day's movement record.

    quantity is what the caller entered; only ADJUSTMENT uses its sign.
    reported_* are same-day figures the caller supplied alongside an
    ADDED/RETURNED movement. None means "not supplied", never zero.
    expiry_deductions maps batch_key -> quantity written off on this day
    because that batch reached its cutover.
    """
    entry_date: date
    kind: str
    quantity: int
    id: Optional[int] = None
    expire_date: Optional[date] = None
    batch_number: Optional[str] = None
    notes: Optional[str] = None

    reported_used_stock: Optional[int] = None
    reported_damage_stock: Optional[int] = None
    reported_expired_old_stock: Optional[int] = None

    expiry_deductions: Dict[str, int] = field(default_factory=dict)

    # Derived by the recalculator
    carry_forward: int = 0
    stock_added: int = 0
    used_stock: int = 0
    expired_old_stock: int = 0
    expired_stock: int = 0
    damage_stock: int = 0
    balance: int = 0

    @property
    def is_auto_generated(self) -> bool:
        return bool(self.notes) and self.notes.startswith(AUTO_NOTE_PREFIX)

    @property
    def is_batch_source(self) -> bool:
        """True when this entry brought an expiring batch into stock."""
        return (
            self.kind in BATCH_KINDS
            and self.expire_date is not None
            and not self.is_auto_generated
            and self.quantity != 0
        )

    @property
    def batch_key(self) -> str:
        return batch_key_for(self.entry_date, self.batch_number)

    def batch_remaining(self) -> int:
        """Quantity of this batch still on hand when it reaches its cutover."""
        derived = derive_buckets(self)
        remaining = (
            derived.stock_added
            - (self.reported_used_stock or 0)
            - (self.reported_damage_stock or 0)
            - (self.reported_expired_old_stock or 0)
        )
        return max(0, remaining)

    def buckets(self) -> Buckets:
        return Buckets(
            stock_added=self.stock_added,
            used_stock=self.used_stock,
            expired_old_stock=self.expired_old_stock,
            expired_stock=self.expired_stock,
            damage_stock=self.damage_stock,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.entry_date.isoformat(),
            "type": self.kind,
            "quantity": self.quantity,
            "carry_forward": self.carry_forward,
            "stock_added": self.stock_added,
            "used_stock": self.used_stock,
            "expired_old_stock": self.expired_old_stock,
            "expired_stock": self.expired_stock,
            "damage_stock": self.damage_stock,
            "balance": self.balance,
            "expire_date": self.expire_date.isoformat() if self.expire_date else None,
            "batch_number": self.batch_number,
            "notes": self.notes,
            "auto_generated": self.is_auto_generated,
            "expired_batches": sorted(self.expiry_deductions),
        }


def derive_buckets(entry: LedgerEntry) -> Buckets:
    """
    Movement semantics by kind.

    ADDED/RETURNED  stock_added = qty, plus any same-day figures reported by the caller
    SOLD            used_stock = qty
    EXPIRED         expired_stock = qty
    DAMAGED         damage_stock = qty
    ADJUSTMENT      stock_added = qty if quantity > 0 else used_stock = qty

    Any batch cutover recorded on the day lands in expired_old_stock,
    whatever the kind.
    """
    qty = abs(entry.quantity)
    buckets = Buckets()

    if entry.kind in BATCH_KINDS:
        buckets.stock_added = qty
        buckets.used_stock = entry.reported_used_stock or 0
        buckets.damage_stock = entry.reported_damage_stock or 0
    elif entry.kind == KIND_SOLD:
        buckets.used_stock = qty
    elif entry.kind == KIND_EXPIRED:
        buckets.expired_stock = qty
    elif entry.kind == KIND_DAMAGED:
        buckets.damage_stock = qty
    elif entry.kind == KIND_ADJUSTMENT:
        if entry.quantity > 0:
            buckets.stock_added = qty
        else:
            buckets.used_stock = qty
    else:
        raise ValueError(f"unknown movement kind: {entry.kind}")

    buckets.expired_old_stock = (entry.reported_expired_old_stock or 0) + sum(
        entry.expiry_deductions.values()
    )
    return buckets


def apply_movement(entry: LedgerEntry, carry_forward: int) -> bool:
    """
    Re-derive an entry's buckets and balance from its opening carry_forward.

    Returns True when any derived field changed.
    """
    buckets = derive_buckets(entry)
    balance = buckets.apply(carry_forward)

    before = (entry.carry_forward, entry.buckets(), entry.balance)

    entry.carry_forward = carry_forward
    entry.stock_added = buckets.stock_added
    entry.used_stock = buckets.used_stock
    entry.expired_old_stock = buckets.expired_old_stock
    entry.expired_stock = buckets.expired_stock
    entry.damage_stock = buckets.damage_stock
    entry.balance = balance

    return before != (carry_forward, buckets, balance)


def make_placeholder(day: date, carry_forward: int, notes: str) -> LedgerEntry:
    """Zero-quantity day that only carries the previous balance forward."""
    if not notes.startswith(AUTO_NOTE_PREFIX):
        notes = f"{AUTO_NOTE_PREFIX} {notes}"
    return LedgerEntry(
        entry_date=day,
        kind=KIND_ADDED,
        quantity=0,
        notes=notes,
        carry_forward=carry_forward,
        balance=carry_forward,
    )
