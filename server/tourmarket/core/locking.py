"""Mutual-exclusion scopes for capacity admission and booking transitions."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class KeyedLock:
    """
    Registry of asyncio locks addressed by string key.

    Locks are created on first use and discarded once the last holder or
    waiter for a key leaves, so the registry only grows with the number of
    keys that are contended right now.
    """

    def __init__(self, name: str):
        self.name = name
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        """Return True if some task currently holds ``key``."""
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


async def acquire_advisory_lock(db: AsyncSession, key: str) -> None:
    """
    Take a PostgreSQL transaction-scoped advisory lock on ``key``.

    The lock is released when the session's transaction commits or rolls
    back. Other backends (SQLite in tests) rely on the in-process locks alone.
    """
    if db.bind is not None and db.bind.dialect.name == "postgresql":
        await db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:lock_key))"),
            {"lock_key": key},
        )
        logger.debug("Acquired advisory lock", extra={"lock_key": key})


def capacity_key(tour_id: object, travel_date: object) -> str:
    """Lock key for one tour's capacity on one calendar date."""
    return f"capacity:{tour_id}:{travel_date}"


def booking_key(booking_id: object) -> str:
    """Lock key for one booking's lifecycle."""
    return f"booking:{booking_id}"


# Process-wide registries. Lock order is always capacity -> booking.
capacity_locks = KeyedLock("capacity")
booking_locks = KeyedLock("booking")
