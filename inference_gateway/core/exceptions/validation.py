"""
Request Validation Exceptions
"""

from inference_gateway.core.exceptions.base import GatewayError


class InvalidInputError(GatewayError):
    """
    Raised when the image or prompt is malformed.

    Never retried and never counted against a provider: the same input
    would fail again.
    """

    code = "INVALID_REQUEST"
    http_status = 400
    retryable = False
