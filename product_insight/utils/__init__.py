"""Utils module for the product insight engine."""

from product_insight.utils.logger import LogContext, get_logger, setup_logging
from product_insight.utils.retry import (
    ErrorCategory,
    ErrorHandler,
    AppError,
    InputRejectedError,
    NetworkError,
    AuthorizationError,
    StructuralError,
    AppTimeoutError,
    RetriesExhaustedError,
    compute_backoff,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "LogContext",
    "ErrorCategory",
    "ErrorHandler",
    "AppError",
    "InputRejectedError",
    "NetworkError",
    "AuthorizationError",
    "StructuralError",
    "AppTimeoutError",
    "RetriesExhaustedError",
    "compute_backoff",
]
