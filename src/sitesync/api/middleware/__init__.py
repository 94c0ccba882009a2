"""FastAPI middleware for error handling."""

from .error_handlers import (
    http_exception_handler,
    internal_exception_handler,
    register_error_handlers,
    sync_exception_handler,
    validation_exception_handler,
    value_error_handler,
)

__all__ = [
    "register_error_handlers",
    "validation_exception_handler",
    "http_exception_handler",
    "sync_exception_handler",
    "value_error_handler",
    "internal_exception_handler",
]
