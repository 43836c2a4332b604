# Overview: Locking and retry helpers shared by every ledger write.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

"""
Locking discipline:

- One lock per customer id, held across the transaction-log write AND the
  customer-record write, so the pair commits as one unit.
- No operation spans two customers, so no lock ordering is needed.
- customer_lock() serializes writers inside one process (SQLite ignores
  FOR UPDATE); lock_for_update() serializes writers across processes on
  databases that honor row locks. version_id_col on Customer turns any
  remaining race into a StaleDataError, which run_with_retry retries.
"""

_registry_guard = threading.Lock()
# One lock per customer id written since startup; never evicted, so bounded by the customer table.
_customer_locks: dict[int, threading.RLock] = {}
_serial_lock = threading.RLock()


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _lock_for(customer_id: int) -> threading.RLock:
    with _registry_guard:
        lock = _customer_locks.get(customer_id)
        if lock is None:
            lock = threading.RLock()
            _customer_locks[customer_id] = lock
        return lock


@contextmanager
def customer_lock(customer_id: int):
    """Mutual exclusion for all ledger writes touching one customer."""
    lock = _lock_for(customer_id)
    with lock:
        yield


@contextmanager
def serial_allocation_lock():
    """Serializes serial-number allocation for new customers."""
    with _serial_lock:
        yield


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1, retry_on: tuple = ()):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and any extra exception types in retry_on.
    """
    retryable = (OperationalError, StaleDataError) + tuple(retry_on)
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except retryable as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def commit_for_customer(customer_id: int, func, *, attempts: int = 3):
    """
    Run func (which must commit) under the customer's lock with retry.

    Any failure rolls the session back so no half-applied write survives.
    """
    with customer_lock(customer_id):
        try:
            return run_with_retry(func, attempts=attempts)
        except Exception:
            db.session.rollback()
            raise
