"""
Resilient error handling utilities.

Provides the application error hierarchy, backoff arithmetic and a
centralized categorizer that maps any exception onto the retry policy
used by the task executor.
"""

import asyncio
import json
from enum import Enum
from typing import Optional

# =============================================================================
# Custom Exceptions
# =============================================================================

class AppError(Exception):
    """Base application exception."""
    pass

class InputRejectedError(AppError):
    """Malformed user input, rejected locally without any network call."""
    pass

class NetworkError(AppError):
    pass

class AuthorizationError(AppError):
    pass

class StructuralError(AppError):
    """Backend output that is not the JSON we asked for."""
    pass

class AppTimeoutError(NetworkError):
    pass

class RetriesExhaustedError(AppError):
    pass

# =============================================================================
# Error Taxonomy
# =============================================================================

class ErrorCategory(str, Enum):
    INPUT_REJECTION = "input_rejection"
    TRANSIENT_NETWORK = "transient_network"
    STRUCTURAL = "structural"
    AUTHORIZATION = "authorization"
    EXHAUSTION = "exhaustion"
    UNKNOWN = "unknown"


# =============================================================================
# Backoff
# =============================================================================

def compute_backoff(
    attempt: int,
    base_ms: int = 1000,
    cap_seconds: float = 30.0,
) -> float:
    """
    Exponential backoff delay in seconds.

    ``attempt`` is 1-based: the first retry waits ``2 * base_ms``.

    Args:
        attempt: Number of the attempt that just failed.
        base_ms: Base delay in milliseconds.
        cap_seconds: Upper bound for the returned delay.
    """
    delay = (2 ** attempt) * base_ms / 1000.0
    return min(delay, cap_seconds)


# =============================================================================
# Error Handler
# =============================================================================

class ErrorHandler:
    """Centralized error handling and categorization."""

    @staticmethod
    def categorize_error(error: Exception) -> ErrorCategory:
        """Categorize errors for appropriate handling."""
        if isinstance(error, AuthorizationError):
            return ErrorCategory.AUTHORIZATION
        if isinstance(error, InputRejectedError):
            return ErrorCategory.INPUT_REJECTION
        if isinstance(error, RetriesExhaustedError):
            return ErrorCategory.EXHAUSTION
        if isinstance(error, (StructuralError, json.JSONDecodeError)):
            return ErrorCategory.STRUCTURAL
        if isinstance(error, (NetworkError, ConnectionError, OSError, asyncio.TimeoutError)):
            return ErrorCategory.TRANSIENT_NETWORK

        # Check string content
        err_str = str(error).lower()
        if "api key" in err_str or "unauthorized" in err_str:
            return ErrorCategory.AUTHORIZATION
        if "timeout" in err_str or "connection" in err_str:
            return ErrorCategory.TRANSIENT_NETWORK

        return ErrorCategory.UNKNOWN

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        """Everything except authorization and input errors gets another attempt."""
        category = ErrorHandler.categorize_error(error)
        return category not in (ErrorCategory.AUTHORIZATION, ErrorCategory.INPUT_REJECTION)

    @staticmethod
    def describe(error: Exception, limit: Optional[int] = 200) -> str:
        """Short one-line description for logs and task error fields."""
        text = f"{type(error).__name__}: {error}"
        if limit and len(text) > limit:
            text = text[: limit - 3] + "..."
        return text
