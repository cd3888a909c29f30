from inference_gateway.core.resilience.circuit_breaker import (
    BreakerConfig,
    CircuitBreaker,
    CircuitBreakerManager,
    CircuitPermit,
    CircuitSnapshot,
)
from inference_gateway.core.resilience.key_rotator import KeyRotator, build_credentials
from inference_gateway.core.resilience.spend_guard import SpendGuard, token_cost

__all__ = [
    "BreakerConfig",
    "CircuitBreaker",
    "CircuitBreakerManager",
    "CircuitPermit",
    "CircuitSnapshot",
    "KeyRotator",
    "SpendGuard",
    "build_credentials",
    "token_cost",
]
