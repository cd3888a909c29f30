"""
Base Exception Class

This module contains ONLY the base exception class that all other exceptions inherit from.
All specialized exceptions are in their respective themed modules.

Every gateway failure is classified: it carries a stable ``code``, an
HTTP-equivalent status and whether retrying later can succeed. Callers map
the classification instead of inspecting messages.
"""

from typing import Any


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message: Error message
        request_id: Request ID for correlation (if available)
        details: Additional error details (dict)
        code: Stable machine-readable classification
        http_status: HTTP-equivalent status for the API layer
        retryable: Whether the same request may succeed later

    Example:
        raise ProviderTimeoutError(
            "Gemini did not answer in time",
            request_id="abc-123",
            details={"provider": "gemini", "timeout_seconds": 30}
        )
    """

    code: str = "INTERNAL_ERROR"
    http_status: int = 500
    retryable: bool = False

    def __init__(
        self, message: str, request_id: str | None = None, details: dict[str, Any] | None = None
    ):
        self.message = message
        self.request_id = request_id
        self.details = (details or {}).copy()  # Create a copy to prevent external modification
        super().__init__(self.message)

    @property
    def provider(self) -> str | None:
        """Provider the failure is attributed to, if any."""
        return self.details.get("provider")

    @property
    def retry_after(self) -> int | None:
        """Seconds the caller should wait before retrying, when known."""
        return self.details.get("retry_after")

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for logging/API responses.

        Returns:
            Dict with error_type, code, message, request_id, retryable and details
        """
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "request_id": self.request_id,
            "retryable": self.retryable,
            "details": self.details,
        }

    def with_context(self, **context) -> "GatewayError":
        """
        Add additional context to the error details.

        Returns:
            Self (for method chaining)
        """
        self.details.update(context)
        return self

    def __repr__(self) -> str:
        details_str = f", details={self.details}" if self.details else ""
        request_id_str = f", request_id='{self.request_id}'" if self.request_id else ""
        return f"{self.__class__.__name__}(message='{self.message}'{request_id_str}{details_str})"

    @classmethod
    def from_exception(
        cls,
        exc: Exception,
        message: str | None = None,
        request_id: str | None = None,
        **details
    ) -> "GatewayError":
        """
        Create a gateway error from another exception.

        Useful for wrapping third-party exceptions with additional context.

        Example:
            >>> try:
            ...     await client.post(url, json=body)
            ... except httpx.TransportError as e:
            ...     raise ProviderTransportError.from_exception(e, provider="gemini")
        """
        error_message = message or str(exc) or exc.__class__.__name__
        error_details = {
            "original_error": exc.__class__.__name__,
            "original_message": str(exc),
            **details
        }
        return cls(error_message, request_id=request_id, details=error_details)


class ConfigurationError(GatewayError):
    """Raised when configuration is invalid or missing."""
    pass
