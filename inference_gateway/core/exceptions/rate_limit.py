"""
Rate Limiting Exceptions
"""

from inference_gateway.core.exceptions.base import GatewayError


class RateLimitExceededError(GatewayError):
    """
    Raised when a rate-limit window is full.

    Details carry ``limit_kind``, ``limit``, ``reset_at`` (epoch seconds of
    the next window start) and ``retry_after``. Never mutates breaker or
    cache state.
    """

    code = "RATE_LIMIT_EXCEEDED"
    http_status = 429
    retryable = True

    @property
    def reset_at(self) -> int | None:
        return self.details.get("reset_at")

    @property
    def limit_kind(self) -> str | None:
        return self.details.get("limit_kind")
