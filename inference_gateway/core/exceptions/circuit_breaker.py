"""
Circuit Breaker Exceptions
"""

from inference_gateway.core.exceptions.base import GatewayError


class CircuitBreakerError(GatewayError):
    """Base exception for circuit breaker misuse."""
    pass


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when a circuit rejects a call without contacting the provider.

    Details carry ``provider``, ``state`` and ``open_until``.
    """

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True

    @property
    def open_until(self) -> float | None:
        return self.details.get("open_until")
