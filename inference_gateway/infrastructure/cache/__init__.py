from inference_gateway.infrastructure.cache.result_cache import (
    CachedOutcome,
    CacheEntry,
    IdempotencyCache,
    ResultCache,
    fingerprint,
)

__all__ = ["CacheEntry", "CachedOutcome", "IdempotencyCache", "ResultCache", "fingerprint"]
