"""
System Constants and Enumerations

This module defines system-wide constants and enumerations used across
the inference gateway.

Architectural Decision: Centralized constants for maintainability
- Single source of truth for store key prefixes and header names
- Type-safe enums for state management
- Easy to update and track changes
"""

from enum import Enum

# ============================================================================
# Enumerations
# ============================================================================


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class Tier(str, Enum):
    """Caller classification that selects the rate-limit quotas."""

    FREE = "free"
    PREMIUM = "premium"


class LLMProvider(str, Enum):
    """Supported inference providers, in routing order."""

    GEMINI = "gemini"
    OPENAI = "openai"


class RateLimitKind(str, Enum):
    """
    Rate-limit windows, listed in the order they are enforced.

    The first window that rejects a request decides the reported limit.
    """

    GLOBAL_MINUTE = "global_minute"
    SOURCE_HOUR = "source_hour"
    CALLER_DAILY = "caller_daily"
    CALLER_MINUTE = "caller_minute"


class StateBackend(str, Enum):
    """Backing store for shared gateway state."""

    MEMORY = "memory"
    REDIS = "redis"


# ============================================================================
# Store Key Prefixes
# ============================================================================

CIRCUIT_KEY_PREFIX = "circuit"
RATE_LIMIT_KEY_PREFIX = "ratelimit"
KEY_POOL_KEY_PREFIX = "keypool"
RESULT_CACHE_KEY_PREFIX = "cache:result"
IDEMPOTENCY_KEY_PREFIX = "idempotency"
SPEND_KEY_PREFIX = "spend"

# ============================================================================
# Time Windows (seconds)
# ============================================================================

SECONDS_PER_MINUTE = 60
SECONDS_PER_HOUR = 3600
SECONDS_PER_DAY = 86400

# ============================================================================
# Request Validation
# ============================================================================

ALLOWED_IMAGE_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/webp",
        "image/heic",
        "image/heif",
    }
)

# ============================================================================
# HTTP Headers
# ============================================================================

HEADER_REQUEST_ID = "X-Request-ID"
HEADER_USER_ID = "X-User-ID"
HEADER_USER_TIER = "X-User-Tier"
HEADER_IDEMPOTENCY_KEY = "Idempotency-Key"
HEADER_FORWARDED_FOR = "X-Forwarded-For"
HEADER_RATE_LIMIT_LIMIT = "X-RateLimit-Limit"
HEADER_RATE_LIMIT_REMAINING = "X-RateLimit-Remaining"
HEADER_RATE_LIMIT_RESET = "X-RateLimit-Reset"

# Caller ids and idempotency tokens
MAX_IDENTIFIER_LENGTH = 256
