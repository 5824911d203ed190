# Overview: Locking and retry helpers shared by every write path.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyConflict


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class KeyLockRegistry:
    """
    One re-entrant lock per key (an IMEI), shared by every holder and waiter.

    Serializes validation-through-carry-forward for a single unit inside this
    process. Different keys never contend. An entry lives only while some
    thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [RLock, holders + waiters]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def acquire(self, key: str) -> None:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
        entry[0].acquire()

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]
        entry[0].release()


_registry = KeyLockRegistry()


def _advisory_xact_lock(key: str) -> None:
    # Cross-process serialization; released by PostgreSQL at commit/rollback.
    if db.session.get_bind().dialect.name == "postgresql":
        db.session.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})


@contextmanager
def key_lock(*keys: str):
    """
    Hold the per-key locks for every key for the duration of the block.

    Keys are acquired in sorted order so two writers locking overlapping
    sets cannot deadlock.
    """
    ordered = sorted({k for k in keys if k})
    held = []
    try:
        for key in ordered:
            _registry.acquire(key)
            held.append(key)
            _advisory_xact_lock(key)
        yield
    finally:
        for key in reversed(held):
            _registry.release(key)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts on stock_entries.version_id). When the
    attempts run out the caller gets ConcurrencyConflict.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflict(
                    "Another update touched the same stock record; please retry"
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
