"""
Redis State Store

Shared implementation of the StateStore protocol for multi-instance
deployments. Every instance of the gateway sees the same rate windows,
circuit snapshots, cooldowns and caches.

Atomicity:
- ``update`` uses optimistic WATCH/MULTI/EXEC transactions and retries a
  bounded number of times when another instance wins the race
- ``hit_windows`` and ``incr`` run as Lua scripts, so check-then-increment
  happens in one server-side step

Error Handling Strategy:
- Catch RedisError exceptions
- Log error with context (stage, key)
- Raise StoreError with details
"""

import logging
from collections.abc import Sequence
from typing import Any

import redis.asyncio as redis
from redis.asyncio import ConnectionPool
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from inference_gateway.core.config.settings import Settings
from inference_gateway.core.exceptions import StoreConflictError, StoreConnectionError, StoreError
from inference_gateway.core.interfaces.state_store import UpdateFn, WindowSpec
from inference_gateway.core.logging.logger import get_logger

logger = get_logger(__name__)

# KEYS: window storage keys. ARGV: limits followed by TTLs in seconds.
# Returns 0 when every window admitted the hit, else the 1-based index of the full one.
HIT_WINDOWS_SCRIPT = """
local n = #KEYS
for i = 1, n do
  local current = tonumber(redis.call('GET', KEYS[i]) or '0')
  if current >= tonumber(ARGV[i]) then
    return i
  end
end
for i = 1, n do
  local count = redis.call('INCR', KEYS[i])
  if count == 1 then
    redis.call('EXPIRE', KEYS[i], tonumber(ARGV[n + i]))
  end
end
return 0
"""

# KEYS[1]: counter. ARGV[1]: TTL in milliseconds (0 for none), applied on creation only.
INCR_SCRIPT = """
local value = redis.call('INCR', KEYS[1])
if value == 1 and tonumber(ARGV[1]) > 0 then
  redis.call('PEXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return value
"""


def _ttl_ms(ttl: float | None) -> int | None:
    return max(1, int(ttl * 1000)) if ttl else None


class RedisStateStore:
    """
    StateStore backed by a shared Redis instance.

    Example:
        store = await connect_redis_store(get_settings())
        await store.hit_windows([...])
    """

    def __init__(self, client: redis.Redis, max_update_attempts: int = 16):
        self._redis = client
        self._max_update_attempts = max_update_attempts
        self._hit_windows = client.register_script(HIT_WINDOWS_SCRIPT)
        self._incr = client.register_script(INCR_SCRIPT)

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as e:
            logger.error("Redis GET failed", stage="STORE.GET", key=key, error=str(e))
            raise StoreError(f"Redis GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl: float | None = None, nx: bool = False) -> bool:
        try:
            result = await self._redis.set(key, value, px=_ttl_ms(ttl), nx=nx)
            return bool(result)
        except RedisError as e:
            logger.error("Redis SET failed", stage="STORE.SET", key=key, error=str(e))
            raise StoreError(f"Redis SET failed: {e}", details={"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(key)
        except RedisError as e:
            logger.error("Redis DELETE failed", stage="STORE.DEL", key=key, error=str(e))
            raise StoreError(f"Redis DELETE failed: {e}", details={"key": key}) from e

    async def incr(self, key: str, ttl: float | None = None) -> int:
        try:
            return int(await self._incr(keys=[key], args=[_ttl_ms(ttl) or 0]))
        except RedisError as e:
            logger.error("Redis INCR failed", stage="STORE.INCR", key=key, error=str(e))
            raise StoreError(f"Redis INCR failed: {e}", details={"key": key}) from e

    async def update(self, key: str, fn: UpdateFn, ttl: float | None = None) -> Any:
        """
        Optimistic read-modify-write.

        STAGE-STORE.CAS: WATCH the key, compute the new value, commit in MULTI.
        A WatchError means another writer committed first; recompute from the
        fresh value.
        """
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for _ in range(self._max_update_attempts):
                    try:
                        await pipe.watch(key)
                        current = await pipe.get(key)
                        new_value, result = fn(current)
                        pipe.multi()
                        if new_value is None:
                            pipe.delete(key)
                        else:
                            pipe.set(key, new_value, px=_ttl_ms(ttl))
                        await pipe.execute()
                        return result
                    except WatchError:
                        logger.debug("Optimistic update retried", stage="STORE.CAS", key=key)
                        continue
        except RedisError as e:
            logger.error("Redis update failed", stage="STORE.CAS", key=key, error=str(e))
            raise StoreError(f"Redis update failed: {e}", details={"key": key}) from e

        raise StoreConflictError(
            "Atomic update kept conflicting",
            details={"key": key, "attempts": self._max_update_attempts},
        )

    async def hit_windows(self, windows: Sequence[WindowSpec]) -> int | None:
        keys = [window.storage_key for window in windows]
        args = [window.limit for window in windows] + [window.window_seconds for window in windows]
        try:
            rejected = int(await self._hit_windows(keys=keys, args=args))
        except RedisError as e:
            logger.error("Redis window check failed", stage="STORE.WINDOW", keys=keys, error=str(e))
            raise StoreError(f"Redis window check failed: {e}", details={"keys": keys}) from e
        return None if rejected == 0 else rejected - 1

    async def window_count(self, window: WindowSpec) -> int:
        value = await self.get(window.storage_key)
        return int(value or 0)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose(close_connection_pool=True)
        logger.info("Redis disconnected", stage="REDIS.3")


_std_logger = logging.getLogger(__name__)  # Tenacity needs std lib logger


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential_jitter(initial=0.5, max=4.0),
    retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
    before_sleep=before_sleep_log(_std_logger, logging.WARNING),
    reraise=True,
)
async def _ping_with_retry(client: redis.Redis) -> None:
    await client.ping()


async def connect_redis_store(settings: Settings) -> RedisStateStore:
    """
    Build a pooled Redis client and verify it answers.

    STAGE-REDIS.2: Connection establishment

    Raises:
        StoreConnectionError: If Redis is unreachable after retries
    """
    redis_settings = settings.redis
    pool = ConnectionPool(
        host=redis_settings.REDIS_HOST,
        port=redis_settings.REDIS_PORT,
        db=redis_settings.REDIS_DB,
        password=redis_settings.REDIS_PASSWORD,
        max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
        socket_connect_timeout=redis_settings.REDIS_SOCKET_CONNECT_TIMEOUT,
        socket_timeout=redis_settings.REDIS_SOCKET_TIMEOUT,
        health_check_interval=redis_settings.REDIS_HEALTH_CHECK_INTERVAL,
        decode_responses=True,  # Return strings instead of bytes
    )
    client = redis.Redis(connection_pool=pool)

    try:
        await _ping_with_retry(client)
    except (RedisConnectionError, RedisTimeoutError) as e:
        logger.error("Failed to connect to Redis", stage="REDIS.2", error=str(e))
        await client.aclose(close_connection_pool=True)
        raise StoreConnectionError(
            f"Failed to connect to Redis: {e}",
            details={"host": redis_settings.REDIS_HOST, "port": redis_settings.REDIS_PORT},
        ) from e

    logger.info(
        "Redis connected successfully",
        stage="REDIS.2",
        host=redis_settings.REDIS_HOST,
        port=redis_settings.REDIS_PORT,
        max_connections=redis_settings.REDIS_MAX_CONNECTIONS,
    )
    return RedisStateStore(client)
