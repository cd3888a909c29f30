"""
In-Memory State Store

Single-process implementation of the StateStore protocol.

Concurrency model:
- Every key has its own asyncio.Lock; read-modify-write runs under it. A
  lock is only dropped by the sweep once nobody holds or waits on it
- Multi-key operations acquire the locks in sorted key order, so two
  overlapping window checks can never deadlock
- Rate windows are counted per (key, window_start), like the Redis store, so
  a late hit for an older window never resets the current one
- Expiry is passive (checked on read); a sweep every N writes drops expired
  entries and idle locks to bound memory

Only correct while a single process serves traffic. Use RedisStateStore when
the gateway is scaled horizontally.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

from inference_gateway.core.interfaces.state_store import Clock, UpdateFn, WindowSpec
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)


@dataclass
class _Entry:
    value: str
    expires_at: float | None


@dataclass
class RateWindow:
    """Counter plus the start of the window it belongs to."""

    count: int
    window_start: int
    window_seconds: int


class MemoryStateStore:
    """
    Keyed in-memory store with per-key locking.

    Example:
        store = MemoryStateStore()
        await store.incr("keypool:gemini:cursor")
    """

    def __init__(self, clock: Clock = time.time, sweep_interval: int = 1000):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._entries: dict[str, _Entry] = {}
        self._windows: dict[str, RateWindow] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per lock
        self._lock_users: dict[str, int] = {}
        self._writes_since_sweep = 0

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[key] - 1
            if remaining:
                self._lock_users[key] = remaining
            else:
                del self._lock_users[key]

    def _read(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def _write(self, key: str, value: str | None, ttl: float | None) -> None:
        if value is None:
            self._entries.pop(key, None)
        else:
            expires_at = self._clock() + ttl if ttl else None
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

        self._writes_since_sweep += 1
        if self._writes_since_sweep >= self._sweep_interval:
            self.sweep()

    def _current_window(self, window: WindowSpec) -> RateWindow:
        stored = self._windows.get(window.storage_key)
        if stored is None:
            stored = RateWindow(count=0, window_start=window.window_start,
                                window_seconds=window.window_seconds)
            self._windows[window.storage_key] = stored
        return stored

    def sweep(self) -> int:
        """
        Drop expired entries, finished windows and idle locks.

        Returns:
            int: Number of entries removed
        """
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items()
            if entry.expires_at is not None and now >= entry.expires_at
        ]
        for key in expired:
            del self._entries[key]

        finished = [
            key for key, window in self._windows.items()
            if now >= window.window_start + window.window_seconds
        ]
        for key in finished:
            del self._windows[key]

        idle = [
            key for key in self._locks
            if key not in self._lock_users and key not in self._entries
        ]
        for key in idle:
            del self._locks[key]

        self._writes_since_sweep = 0
        removed = len(expired) + len(finished)
        if removed:
            logger.debug("Memory store swept", stage="STORE.SWEEP", removed=removed)
        return removed

    async def get(self, key: str) -> str | None:
        return self._read(key)

    async def set(self, key: str, value: str, ttl: float | None = None, nx: bool = False) -> bool:
        async with self._locked(key):
            if nx and self._read(key) is not None:
                return False
            self._write(key, value, ttl)
            return True

    async def delete(self, key: str) -> None:
        async with self._locked(key):
            self._entries.pop(key, None)

    async def incr(self, key: str, ttl: float | None = None) -> int:
        async with self._locked(key):
            current = self._read(key)
            value = int(current or 0) + 1
            if current is None:
                self._write(key, str(value), ttl)
            else:
                # Keep the original expiry, like Redis INCR
                self._entries[key].value = str(value)
            return value

    async def update(self, key: str, fn: UpdateFn, ttl: float | None = None) -> Any:
        async with self._locked(key):
            new_value, result = fn(self._read(key))
            self._write(key, new_value, ttl)
            return result

    async def hit_windows(self, windows: Sequence[WindowSpec]) -> int | None:
        keys = sorted({window.storage_key for window in windows})
        async with AsyncExitStack() as stack:
            for key in keys:
                await stack.enter_async_context(self._locked(key))

            current = [self._current_window(window) for window in windows]
            for index, (window, stored) in enumerate(zip(windows, current)):
                if stored.count >= window.limit:
                    return index

            for stored in current:
                stored.count += 1
            return None

    async def window_count(self, window: WindowSpec) -> int:
        stored = self._windows.get(window.storage_key)
        return 0 if stored is None else stored.count

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._entries.clear()
        self._windows.clear()
        self._locks.clear()
        self._lock_users.clear()
