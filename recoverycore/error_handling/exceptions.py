"""
Error Handling Exceptions
========================

Exception hierarchy raised by the protective wrappers and notification
adapters of the recovery engine.
"""

from typing import Any, Optional


class RecoveryCoreError(Exception):
    """Base exception for recovery engine operations."""

    def __init__(self, message: str, original_error: Optional[Exception] = None, **kwargs):
        super().__init__(message)
        self.original_error = original_error
        self.metadata = kwargs


class CircuitOpenError(RecoveryCoreError):
    """Exception raised when circuit breaker is open."""
    pass


class RateLimitExceededError(RecoveryCoreError):
    """Exception raised when a rate limiter rejects an operation."""
    pass


class NotificationError(RecoveryCoreError):
    """Exception raised when a notification channel fails to deliver."""
    pass


class ReportedError(RecoveryCoreError):
    """
    Error raised by application subsystems with structured metadata.

    Carrying an explicit ``code`` and ``category`` lets the classifier skip
    keyword heuristics for errors the caller already understands.
    """

    def __init__(self, message: str, code: Optional[str] = None,
                 category: Optional[Any] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.category = category
