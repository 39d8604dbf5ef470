"""
RecoveryCore
============

Error handling and recovery engine for the backlink automation platform.

Subsystems report failures through ``ErrorHandlingEngine.handle_error``; the
engine classifies, records, alerts, recovers and escalates.
"""

from .engine import ErrorHandlingEngine, select_recovery_strategy
from .error_handling import (
    CircuitOpenError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    RateLimitExceededError,
    RecoveryStrategy,
    ReportedError
)

__version__ = "1.0.0"

__all__ = [
    "ErrorHandlingEngine",
    "select_recovery_strategy",
    "CircuitOpenError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "RateLimitExceededError",
    "RecoveryStrategy",
    "ReportedError",
]
