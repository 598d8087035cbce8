# Overview: Service-layer helpers for concurrency; per-product locking and retry of ledger writes.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


class ConcurrencyConflict(Exception):
    """A ledger aggregate changed between load and save, and retries ran out."""


# One lock per (theater, product) ever touched; never pruned, so it grows with the catalogue
_key_locks: dict[tuple[int, int], threading.Lock] = {}
_key_locks_guard = threading.Lock()


def _lock_for(theater_id: int, product_id: int) -> threading.Lock:
    with _key_locks_guard:
        lock = _key_locks.get((theater_id, product_id))
        if lock is None:
            lock = threading.Lock()
            _key_locks[(theater_id, product_id)] = lock
        return lock


@contextmanager
def product_key_lock(theater_id: int, product_id: int):
    """
    Serialize ledger work for one (theater, product) within this process.

    Different products never share a lock. Cross-process races are caught by
    the optimistic version check and retried by run_with_retry.
    """
    lock = _lock_for(theater_id, product_id)
    with lock:
        yield


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a full load -> recalculate -> save cycle, retrying on conflicts.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts), IntegrityError (two writers creating the
    same month) and ConcurrencyConflict. Each retry starts from a rolled-back
    session so nothing from the losing attempt is partially applied.
    """
    if attempts is None:
        attempts = current_app.config.get("STOCK_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("STOCK_RETRY_BACKOFF_SECONDS", 0.1)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, IntegrityError, ConcurrencyConflict) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    f"stock ledger changed concurrently; gave up after {attempts} attempts"
                ) from exc
            current_app.logger.warning(
                "Stock ledger write conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
    raise ConcurrencyConflict("stock ledger write was not attempted")
