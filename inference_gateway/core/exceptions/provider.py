"""
Provider Exceptions

Classified outcomes of a single provider call, plus the terminal error the
orchestrator raises once every provider has been tried.
"""

from inference_gateway.core.exceptions.base import GatewayError


class ProviderError(GatewayError):
    """Base exception for provider call failures."""

    code = "PROVIDER_ERROR"
    http_status = 502


class ProviderTimeoutError(ProviderError):
    """
    Raised when the provider does not answer within the configured timeout.

    Counted against the breaker.
    """

    code = "PROVIDER_TIMEOUT"
    http_status = 504
    retryable = True


class ProviderTransportError(ProviderError):
    """
    Raised on network-level failures and provider-reported transient statuses.

    Common causes:
    - Connection refused or reset
    - DNS failure
    - Provider 5xx or 408
    """

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True


class ProviderQuotaExceededError(ProviderError):
    """
    Raised when a credential hits its provider quota.

    Puts the credential into cooldown. Not a breaker failure by itself.
    """

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True


class ProviderAuthenticationError(ProviderQuotaExceededError):
    """
    Raised when the provider rejects a credential.

    Handled like a quota error: the key cools down and another is tried on
    the next request.
    """
    pass


class ProviderTerminalError(ProviderError):
    """
    Raised on malformed or empty responses and non-retryable provider statuses.

    Counted against the breaker and never cached as a result.
    """

    code = "PROVIDER_ERROR"
    http_status = 502
    retryable = False


class ProviderNotConfiguredError(ProviderError):
    """Raised when a provider has no credentials configured."""

    code = "AI_UNAVAILABLE"
    http_status = 503


class CredentialsExhaustedError(ProviderError):
    """Raised when every credential of a provider is cooling down."""

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True


class FallbackBudgetExceededError(ProviderError):
    """Raised when the fallback provider's daily spend ceiling is reached."""

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True


class AllProvidersExhaustedError(ProviderError):
    """
    Raised when no provider produced a result.

    This is terminal for the request and never cached. ``details["attempts"]``
    lists what happened with each provider, and ``retry_after`` is set when
    the earliest recovery time is known.
    """

    code = "AI_UNAVAILABLE"
    http_status = 503
    retryable = True
