"""
State Store Protocol

This module defines the keyed store behind all shared gateway state: rate
windows, circuit snapshots, credential cooldowns, caches and spend counters.

Architectural Decision: Protocol-based abstraction
- A single-process deployment uses in-memory structures guarded by per-key locks
- A horizontally scaled deployment backs the same contract with Redis
- Components depend only on this protocol, so tests inject the memory store

Atomicity contract:
- ``update`` is a read-modify-write that never loses a concurrent update
- ``hit_windows`` checks and increments several fixed windows all-or-nothing
- ``incr`` and ``set(nx=True)`` are atomic per key
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


# fn(current_value) -> (new_value or None to delete, result returned to caller)
UpdateFn = Callable[[str | None], tuple[str | None, Any]]

Clock = Callable[[], float]


def window_start(now: float, window_seconds: int) -> int:
    """Start of the epoch-aligned window containing ``now``."""
    return int(now // window_seconds) * window_seconds


@dataclass(frozen=True)
class WindowSpec:
    """
    A fixed rate window.

    ``key`` identifies the counter (e.g. ``ratelimit:daily:user-1``) and
    ``window_start`` the epoch second at which the current window began. A
    counter stored for an older ``window_start`` is treated as zero.
    """

    key: str
    limit: int
    window_start: int
    window_seconds: int

    @property
    def storage_key(self) -> str:
        return f"{self.key}:{self.window_start}"

    @property
    def reset_at(self) -> int:
        return self.window_start + self.window_seconds


@runtime_checkable
class StateStore(Protocol):
    """
    Protocol defining the keyed state store used by every gateway component.

    Implementations:
    - MemoryStateStore: single-process store with per-key asyncio locks
    - RedisStateStore: shared store for multi-instance deployments
    """

    async def get(self, key: str) -> str | None:
        """Get a value, or None if missing or expired."""
        ...

    async def set(self, key: str, value: str, ttl: float | None = None, nx: bool = False) -> bool:
        """
        Set a value.

        Args:
            key: Store key
            value: Value to store
            ttl: Time-to-live in seconds (optional)
            nx: Only set if the key does not exist

        Returns:
            bool: True if the value was written
        """
        ...

    async def delete(self, key: str) -> None:
        """Delete a key if present."""
        ...

    async def incr(self, key: str, ttl: float | None = None) -> int:
        """
        Atomically increment an integer counter.

        ``ttl`` is applied only when the increment creates the key.
        """
        ...

    async def update(self, key: str, fn: UpdateFn, ttl: float | None = None) -> Any:
        """
        Atomically apply ``fn`` to the current value.

        Raises:
            StoreConflictError: If the update cannot be applied atomically
        """
        ...

    async def hit_windows(self, windows: Sequence[WindowSpec]) -> int | None:
        """
        Check every window and increment all of them only if none is full.

        Returns:
            Index of the first full window (nothing incremented), or None
            when all windows admitted the hit.
        """
        ...

    async def window_count(self, window: WindowSpec) -> int:
        """Current count of a window without incrementing it."""
        ...

    async def ping(self) -> bool:
        """Check if the store is healthy."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
