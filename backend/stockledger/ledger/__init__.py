"""
Perishable-stock ledger core.

Pure, deterministic and free of I/O: services load aggregates, hand them to
these functions, and persist whatever they touched.
"""
from .entries import (
    AUTO_NOTE_PREFIX,
    BATCH_KINDS,
    KIND_ADDED,
    KIND_ADJUSTMENT,
    KIND_DAMAGED,
    KIND_EXPIRED,
    KIND_RETURNED,
    KIND_SOLD,
    VALID_KINDS,
    LedgerEntry,
    apply_movement,
    batch_key_for,
    derive_buckets,
)
from .monthly import MonthlyLedger, ProductLedger
from .recalculator import recalculate_month
from .chain import find_chain_breaks, resolve_chain
from .expiry import ExpansionResult, expand_batch
from .sweeper import SweepResult, expand_all, regenerate, strip_generated, sweep

__all__ = [
    'AUTO_NOTE_PREFIX', 'BATCH_KINDS', 'VALID_KINDS',
    'KIND_ADDED', 'KIND_RETURNED', 'KIND_SOLD', 'KIND_EXPIRED', 'KIND_DAMAGED', 'KIND_ADJUSTMENT',
    'LedgerEntry', 'apply_movement', 'batch_key_for', 'derive_buckets',
    'MonthlyLedger', 'ProductLedger',
    'recalculate_month', 'resolve_chain', 'find_chain_breaks',
    'ExpansionResult', 'expand_batch',
    'SweepResult', 'expand_all', 'sweep', 'strip_generated', 'regenerate',
]
