"""Rate limiting for ArcadeGate.

Two independent limiters live here:

1. ``RateLimiter`` — the sliding-window gate on code validation. Per
   normalized client address it admits at most ``max_attempts`` attempts in
   any rolling ``window_seconds``. A rejected attempt is NOT recorded, so a
   client that backs off regains access as soon as its oldest attempt ages
   out. Attempt history lives in a pluggable ``AttemptStore``:

     MemoryAttemptStore  — in-process map (single-instance deployments)
     SQLiteAttemptStore  — table in the shared key database (several
                           processes pointed at one database file)

   Both implement check-and-record as one atomic step. ``prune()`` evicts
   addresses with no attempt inside the window so memory stays bounded;
   ``run_pruner()`` repeats it in the background for the app's lifetime.

2. ``limiter`` — slowapi (Starlette-compatible) coarse cap on the key
   management endpoints, shared between auth/router.py and main.py.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, Optional, Protocol, runtime_checkable

import aiosqlite
from slowapi import Limiter
from slowapi.util import get_remote_address

from arcadegate.constants import (
    KEY_MANAGEMENT_RATE_LIMIT,
    RATE_LIMIT_MAX_ATTEMPTS,
    RATE_LIMIT_PRUNE_INTERVAL_SECONDS,
    RATE_LIMIT_WINDOW_SECONDS,
)
from arcadegate.utils.logger import get_logger

logger = get_logger(__name__)

# Module-level limiter, shared by main.py and auth/router.py
limiter = Limiter(key_func=get_remote_address)

__all__ = [
    "AttemptStore",
    "KEY_MANAGEMENT_RATE_LIMIT",
    "MemoryAttemptStore",
    "RateLimiter",
    "SQLiteAttemptStore",
    "limiter",
]


# ─── AttemptStore Protocol ────────────────────────────────────────────────────


@runtime_checkable
class AttemptStore(Protocol):
    """Backing store for sliding-window attempt history."""

    async def try_record(self, address: str, now: float, window: float, limit: int) -> bool:
        """Record an attempt at ``now`` unless ``limit`` attempts already fall
        within ``(now - window, now]``. Returns True if recorded.

        Must be atomic per address.
        """
        ...

    async def prune(self, now: float, window: float) -> int:
        """Drop expired attempts; return the number of addresses evicted."""
        ...

    async def close(self) -> None:
        ...


# ─── MemoryAttemptStore ──────────────────────────────────────────────────────


class MemoryAttemptStore:
    """In-process attempt history: address → deque of attempt timestamps.

    try_record() contains no await point, so on a single event loop it is
    atomic with respect to every other coroutine.
    """

    def __init__(self) -> None:
        self._attempts: dict[str, deque[float]] = {}

    def __len__(self) -> int:
        return len(self._attempts)

    async def try_record(self, address: str, now: float, window: float, limit: int) -> bool:
        attempts = self._attempts.get(address)
        if attempts is None:
            attempts = self._attempts[address] = deque()
        cutoff = now - window
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        if len(attempts) >= limit:
            return False
        attempts.append(now)
        return True

    async def prune(self, now: float, window: float) -> int:
        cutoff = now - window
        stale = [
            address
            for address, attempts in self._attempts.items()
            if not attempts or attempts[-1] <= cutoff
        ]
        for address in stale:
            del self._attempts[address]
        return len(stale)

    async def close(self) -> None:
        self._attempts.clear()


# ─── SQLiteAttemptStore ──────────────────────────────────────────────────────

_CREATE_ATTEMPTS_SQL = """
CREATE TABLE IF NOT EXISTS rate_limit_attempts (
    address         TEXT NOT NULL,
    attempted_at    REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_rate_limit_address_time
    ON rate_limit_attempts(address, attempted_at);
"""


class SQLiteAttemptStore:
    """Attempt history shared through the key database.

    try_record() is a single conditional INSERT: the count and the write
    happen inside one statement, so concurrent processes cannot both slip
    under the limit.

    The connection is borrowed from the KeyStore and is not closed here.
    Pass the KeyStore's write_lock so writes on the shared connection never
    interleave with key writes between statement and commit.
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        write_lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self._db = connection
        self._write_lock = write_lock or asyncio.Lock()

    async def initialize(self) -> None:
        async with self._write_lock:
            await self._db.executescript(_CREATE_ATTEMPTS_SQL)
            await self._db.commit()

    async def try_record(self, address: str, now: float, window: float, limit: int) -> bool:
        async with self._write_lock:
            try:
                cursor = await self._db.execute(
                    "INSERT INTO rate_limit_attempts (address, attempted_at) "
                    "SELECT ?, ? WHERE ("
                    "  SELECT COUNT(*) FROM rate_limit_attempts "
                    "  WHERE address = ? AND attempted_at > ?"
                    ") < ?",
                    (address, now, address, now - window, limit),
                )
                recorded = cursor.rowcount > 0
                await cursor.close()
                await self._db.commit()
            except BaseException:
                await self._db.rollback()
                raise
        return recorded

    async def prune(self, now: float, window: float) -> int:
        cutoff = now - window
        async with self._write_lock:
            try:
                async with self._db.execute(
                    "SELECT COUNT(DISTINCT address) FROM rate_limit_attempts "
                    "WHERE address NOT IN ("
                    "  SELECT address FROM rate_limit_attempts WHERE attempted_at > ?"
                    ")",
                    (cutoff,),
                ) as cursor:
                    row = await cursor.fetchone()
                evicted = row[0] if row else 0
                await self._db.execute(
                    "DELETE FROM rate_limit_attempts WHERE attempted_at <= ?",
                    (cutoff,),
                )
                await self._db.commit()
            except BaseException:
                await self._db.rollback()
                raise
        return evicted

    async def close(self) -> None:
        """No-op: the connection belongs to the KeyStore."""


# ─── RateLimiter ──────────────────────────────────────────────────────────────


class RateLimiter:
    """Sliding-window admission gate keyed by client address.

    Args:
        store:          AttemptStore backend.
        max_attempts:   Attempts admitted per window (default 5).
        window_seconds: Window length (default 15 minutes).
        clock:          Returns epoch seconds; injectable for tests.
    """

    def __init__(
        self,
        store: Optional[AttemptStore] = None,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        window_seconds: float = RATE_LIMIT_WINDOW_SECONDS,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store: AttemptStore = store if store is not None else MemoryAttemptStore()
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock or time.time

    async def admit(self, address: str) -> bool:
        """Record and admit the attempt, or return False if the window is full."""
        admitted = await self.store.try_record(
            address, self._clock(), self.window_seconds, self.max_attempts
        )
        if not admitted:
            logger.warning("Validation attempt rate limited", client=address)
        return admitted

    async def prune(self) -> int:
        """Evict addresses with no attempt inside the current window."""
        evicted = await self.store.prune(self._clock(), self.window_seconds)
        if evicted:
            logger.debug("Rate limit store pruned", evicted=evicted)
        return evicted

    async def run_pruner(
        self, interval_seconds: float = RATE_LIMIT_PRUNE_INTERVAL_SECONDS
    ) -> None:
        """Prune forever at a fixed interval. Cancel the task to stop it."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.prune()
            except Exception as exc:
                logger.warning("Rate limit prune failed", error=str(exc))
