"""
State Store Exceptions

All exceptions related to the keyed state stores (memory, Redis).
"""

from inference_gateway.core.exceptions.base import GatewayError


class StoreError(GatewayError):
    """Base exception for state store errors."""
    pass


class StoreConnectionError(StoreError):
    """Raised when the store backend cannot be reached."""
    pass


class StoreConflictError(StoreError):
    """Raised when an atomic update keeps losing its optimistic transaction."""
    pass
