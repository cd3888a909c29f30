#!/usr/bin/env python3
"""
Result and Idempotency Caches

Two caches sit in front of the providers:

    ResultCache        fingerprint(image, prompt) -> NormalizedResult
    IdempotencyCache   (caller, token)            -> NormalizedResult | terminal failure

Both are zero-cost paths: a hit never touches a provider, a breaker or a
rate-limit window.

Write policy:
    - results are written only after a provider call succeeded
    - idempotency entries may also hold a provider's rejection of the input
      itself (terminal, non-retryable), re-raised on replay
    - transient failures and provider exhaustion are never written

Expiry is checked on read against the entry's own creation time and TTL, in
addition to the store TTL, so an entry is never served past its lifetime even
if the backend evicts lazily.

Store failures degrade to a miss (reads) or a skipped write, with a warning.
"""

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Any

import orjson

from inference_gateway.analysis.models.analysis import NormalizedResult
from inference_gateway.core.config.constants import IDEMPOTENCY_KEY_PREFIX, RESULT_CACHE_KEY_PREFIX
from inference_gateway.core.exceptions import (
    GatewayError,
    InvalidInputError,
    StoreError,
)
from inference_gateway.core.interfaces.state_store import Clock, StateStore
from inference_gateway.core.logging.logger import get_logger, log_stage

logger = get_logger(__name__)

# Failures that may be replayed from the idempotency cache
_CACHEABLE_FAILURES: dict[str, type[GatewayError]] = {
    cls.__name__: cls for cls in (InvalidInputError,)
}


def fingerprint(image: bytes, prompt: str) -> str:
    """
    Deterministic digest of image bytes plus prompt text.

    The image length is part of the digest so no (image, prompt) split of
    the same byte stream can collide with another.
    """
    digest = hashlib.sha256()
    digest.update(len(image).to_bytes(8, "big"))
    digest.update(image)
    digest.update(prompt.encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    """Stored outcome with its own lifetime."""

    kind: str
    payload: dict[str, Any]
    created_at: float
    ttl_seconds: float

    def expired(self, now: float) -> bool:
        return now >= self.created_at + self.ttl_seconds

    def dumps(self) -> str:
        return orjson.dumps(
            {
                "kind": self.kind,
                "payload": self.payload,
                "created_at": self.created_at,
                "ttl_seconds": self.ttl_seconds,
            }
        ).decode()

    @classmethod
    def loads(cls, raw: str) -> "CacheEntry":
        data = orjson.loads(raw)
        return cls(
            kind=data["kind"],
            payload=data["payload"],
            created_at=data["created_at"],
            ttl_seconds=data["ttl_seconds"],
        )


@dataclass(frozen=True)
class CachedOutcome:
    """A replayed outcome: either a result or a terminal failure."""

    result: NormalizedResult | None = None
    failure: GatewayError | None = None

    def unwrap(self) -> NormalizedResult:
        if self.failure is not None:
            raise self.failure
        return self.result


class _EntryCache:
    """Shared TTL entry handling for both caches."""

    stage = "CACHE"

    def __init__(self, store: StateStore, ttl_seconds: float, clock: Clock = time.time):
        self._store = store
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._hits = 0
        self._misses = 0
        self._writes = 0

    async def _read(self, key: str, record_stats: bool = True) -> CacheEntry | None:
        entry = await self._load(key)
        if record_stats:
            if entry is None:
                self._misses += 1
            else:
                self._hits += 1
        return entry

    async def _load(self, key: str) -> CacheEntry | None:
        try:
            raw = await self._store.get(key)
        except StoreError as e:
            logger.warning("Cache read failed, treating as miss", stage=self.stage, key=key, error=str(e))
            return None

        if raw is None:
            return None

        entry = CacheEntry.loads(raw)
        if entry.expired(self._clock()):
            await self._delete(key)
            return None
        return entry

    async def _write(self, key: str, kind: str, payload: dict[str, Any]) -> bool:
        entry = CacheEntry(
            kind=kind, payload=payload, created_at=self._clock(), ttl_seconds=self.ttl_seconds
        )
        try:
            await self._store.set(key, entry.dumps(), ttl=self.ttl_seconds)
        except StoreError as e:
            logger.warning("Cache write failed", stage=self.stage, key=key, error=str(e))
            return False
        self._writes += 1
        return True

    async def _delete(self, key: str) -> None:
        try:
            await self._store.delete(key)
        except StoreError as e:
            logger.warning("Cache delete failed", stage=self.stage, key=key, error=str(e))

    def stats(self) -> dict[str, Any]:
        lookups = self._hits + self._misses
        return {
            "hits": self._hits,
            "misses": self._misses,
            "writes": self._writes,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
        }


class ResultCache(_EntryCache):
    """
    Content-addressed cache of provider results.

    STAGE-2: Result cache

    Identical image + identical prompt within the TTL is never paid for twice.
    """

    stage = "2.1"

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: float,
        enabled: bool = True,
        clock: Clock = time.time,
    ):
        super().__init__(store, ttl_seconds, clock)
        self.enabled = enabled

    @staticmethod
    def key(fp: str) -> str:
        return f"{RESULT_CACHE_KEY_PREFIX}:{fp}"

    async def get(self, fp: str) -> NormalizedResult | None:
        if not self.enabled:
            return None
        entry = await self._read(self.key(fp))
        if entry is None or entry.kind != "result":
            return None
        log_stage(logger, "2.1", "Result cache hit", fingerprint=fp[:16])
        return NormalizedResult.model_validate(entry.payload)

    async def put(self, fp: str, result: NormalizedResult) -> None:
        if not self.enabled:
            return
        payload = result.model_copy(update={"cached": False}).model_dump(mode="json")
        if await self._write(self.key(fp), "result", payload):
            log_stage(logger, "2.2", "Result cached", fingerprint=fp[:16], ttl=self.ttl_seconds)

    async def invalidate(self, fp: str) -> None:
        await self._delete(self.key(fp))
        log_stage(logger, "2.3", "Result cache entry invalidated", fingerprint=fp[:16])


class IdempotencyCache(_EntryCache):
    """
    Replay cache keyed by a caller-supplied token, scoped to the caller.

    STAGE-1: Idempotency

    Besides stored outcomes it keeps a short-lived "pending" marker, so a
    retried submission that lands on another gateway instance while the first
    is still running waits for that outcome instead of calling a provider again.
    """

    stage = "1.1"

    def __init__(
        self,
        store: StateStore,
        ttl_seconds: float,
        pending_ttl_seconds: float = 60,
        poll_interval: float = 0.1,
        clock: Clock = time.time,
    ):
        super().__init__(store, ttl_seconds, clock)
        self._pending_ttl = pending_ttl_seconds
        self._poll_interval = poll_interval

    @staticmethod
    def key(caller_id: str, token: str) -> str:
        # Caller ids may contain ":", the hex digest never does
        caller = hashlib.sha256(caller_id.encode("utf-8")).hexdigest()
        return f"{IDEMPOTENCY_KEY_PREFIX}:{caller}:{token}"

    def _pending_key(self, caller_id: str, token: str) -> str:
        return f"{self.key(caller_id, token)}:pending"

    async def get(self, caller_id: str, token: str) -> CachedOutcome | None:
        return await self._lookup(caller_id, token)

    async def _lookup(
        self, caller_id: str, token: str, record_stats: bool = True
    ) -> CachedOutcome | None:
        entry = await self._read(self.key(caller_id, token), record_stats=record_stats)
        if entry is None:
            return None

        log_stage(logger, "1.1", "Idempotent replay", caller_id=caller_id, kind=entry.kind)
        if entry.kind == "result":
            return CachedOutcome(result=NormalizedResult.model_validate(entry.payload))

        error_cls = _CACHEABLE_FAILURES.get(entry.payload.get("error_type"), InvalidInputError)
        failure = error_cls(entry.payload.get("message", ""), details=entry.payload.get("details"))
        return CachedOutcome(failure=failure)

    async def put_result(self, caller_id: str, token: str, result: NormalizedResult) -> None:
        await self._write(self.key(caller_id, token), "result", result.model_dump(mode="json"))

    async def put_failure(self, caller_id: str, token: str, failure: GatewayError) -> None:
        if type(failure).__name__ not in _CACHEABLE_FAILURES:
            return
        payload = {
            "error_type": type(failure).__name__,
            "message": failure.message,
            "details": failure.details,
        }
        await self._write(self.key(caller_id, token), "failure", payload)

    async def claim(self, caller_id: str, token: str) -> bool:
        """
        Mark the token as being processed.

        Returns:
            bool: False if another instance already holds the claim
        """
        try:
            return await self._store.set(
                self._pending_key(caller_id, token), "1", ttl=self._pending_ttl, nx=True
            )
        except StoreError as e:
            logger.warning("Idempotency claim failed, proceeding", stage="1.2", error=str(e))
            return True

    async def release(self, caller_id: str, token: str) -> None:
        await self._delete(self._pending_key(caller_id, token))

    async def wait_for(self, caller_id: str, token: str, timeout: float) -> CachedOutcome | None:
        """
        Wait for another instance to finish the same token.

        STAGE-1.3: Cross-instance wait

        Returns:
            The stored outcome, or None if the other instance gave up without
            storing one (e.g. a transient failure) or the wait timed out
        """
        pending_key = self._pending_key(caller_id, token)
        attempts = max(1, int(timeout / self._poll_interval))
        for _ in range(attempts):
            # Polls are not lookups, keep them out of the hit rate
            outcome = await self._lookup(caller_id, token, record_stats=False)
            if outcome is not None:
                return outcome
            try:
                if await self._store.get(pending_key) is None:
                    return None
            except StoreError as e:
                logger.warning("Idempotency wait aborted", stage="1.3", error=str(e))
                return None
            await asyncio.sleep(self._poll_interval)

        logger.warning("Timed out waiting for in-flight request", stage="1.3", caller_id=caller_id)
        return None
