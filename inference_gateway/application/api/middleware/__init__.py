from inference_gateway.application.api.middleware.error_handler import (
    ErrorHandlingMiddleware,
    gateway_error_handler,
    register_exception_handlers,
)

__all__ = ["ErrorHandlingMiddleware", "gateway_error_handler", "register_exception_handlers"]
