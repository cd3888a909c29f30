"""
Exception Module

Structured exception hierarchy for the inference gateway.
All exceptions are organized by theme for better maintainability.

Module Structure:
-----------------
- **base.py**: GatewayError base class + ConfigurationError
- **cache.py**: State store exceptions (memory, Redis)
- **provider.py**: Provider call outcomes and provider exhaustion
- **circuit_breaker.py**: Circuit breaker exceptions
- **rate_limit.py**: Rate limiting exceptions
- **validation.py**: Request validation exceptions

Usage:
------
```python
from inference_gateway.core.exceptions import GatewayError, RateLimitExceededError
```
"""

# Base exception
from inference_gateway.core.exceptions.base import ConfigurationError, GatewayError

# State store exceptions
from inference_gateway.core.exceptions.cache import (
    StoreConflictError,
    StoreConnectionError,
    StoreError,
)

# Circuit breaker exceptions
from inference_gateway.core.exceptions.circuit_breaker import (
    CircuitBreakerError,
    CircuitBreakerOpenError,
)

# Provider exceptions
from inference_gateway.core.exceptions.provider import (
    AllProvidersExhaustedError,
    CredentialsExhaustedError,
    FallbackBudgetExceededError,
    ProviderAuthenticationError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderQuotaExceededError,
    ProviderTerminalError,
    ProviderTimeoutError,
    ProviderTransportError,
)

# Rate limit exceptions
from inference_gateway.core.exceptions.rate_limit import RateLimitExceededError

# Validation exceptions
from inference_gateway.core.exceptions.validation import InvalidInputError

__all__ = [
    # Base
    "GatewayError",
    "ConfigurationError",
    # State store
    "StoreError",
    "StoreConnectionError",
    "StoreConflictError",
    # Provider
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderTransportError",
    "ProviderQuotaExceededError",
    "ProviderAuthenticationError",
    "ProviderTerminalError",
    "ProviderNotConfiguredError",
    "CredentialsExhaustedError",
    "FallbackBudgetExceededError",
    "AllProvidersExhaustedError",
    # Circuit Breaker
    "CircuitBreakerError",
    "CircuitBreakerOpenError",
    # Rate Limit
    "RateLimitExceededError",
    # Validation
    "InvalidInputError",
]
