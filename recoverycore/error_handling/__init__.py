"""
Error Handling Module
====================

Classification, protection and recovery primitives used by the error
handling engine.

Features:
- Severity and category classification
- Circuit breakers and sliding-window rate limiters
- Recovery strategy handlers
- Recovery command bus for downstream executors
- Error statistics
"""

from .exceptions import (
    RecoveryCoreError,
    CircuitOpenError,
    RateLimitExceededError,
    NotificationError,
    ReportedError
)
from .models import (
    ErrorSeverity,
    ErrorCategory,
    ErrorState,
    RecoveryStrategy,
    Trend,
    NetworkConditions,
    ResourceUsage,
    ErrorMetadata,
    ErrorDetails,
    SystemState,
    RecoveryAction,
    ErrorResolution,
    ErrorPattern,
    ErrorContext,
    RecoverableOperation,
    MAX_RECOVERY_ATTEMPTS,
    get_max_recovery_attempts,
    generate_error_id,
    utcnow
)
from .classifier import classify_error_severity, categorize_error
from .circuit_breaker import CircuitBreaker, CircuitState
from .rate_limiter import RateLimiter
from .commands import CommandBus, RecoveryCommand, CommandExecutor
from .recovery_handlers import (
    IRecoveryHandler,
    CommandRecoveryHandler,
    RetryHandler,
    RateLimitBackoffHandler,
    FallbackHandler,
    CircuitBreakerHandler,
    ResourceScalingHandler,
    GracefulDegradationHandler,
    FailoverHandler,
    RollbackHandler,
    create_default_handlers
)
from .environment import SystemStateCollector, gather_error_metadata
from .statistics import ErrorStatistics, TrendAnalysis, compute_statistics

__all__ = [
    "RecoveryCoreError",
    "CircuitOpenError",
    "RateLimitExceededError",
    "NotificationError",
    "ReportedError",
    "ErrorSeverity",
    "ErrorCategory",
    "ErrorState",
    "RecoveryStrategy",
    "Trend",
    "NetworkConditions",
    "ResourceUsage",
    "ErrorMetadata",
    "ErrorDetails",
    "SystemState",
    "RecoveryAction",
    "ErrorResolution",
    "ErrorPattern",
    "ErrorContext",
    "RecoverableOperation",
    "MAX_RECOVERY_ATTEMPTS",
    "get_max_recovery_attempts",
    "generate_error_id",
    "utcnow",
    "classify_error_severity",
    "categorize_error",
    "CircuitBreaker",
    "CircuitState",
    "RateLimiter",
    "CommandBus",
    "RecoveryCommand",
    "CommandExecutor",
    "IRecoveryHandler",
    "CommandRecoveryHandler",
    "RetryHandler",
    "RateLimitBackoffHandler",
    "FallbackHandler",
    "CircuitBreakerHandler",
    "ResourceScalingHandler",
    "GracefulDegradationHandler",
    "FailoverHandler",
    "RollbackHandler",
    "create_default_handlers",
    "SystemStateCollector",
    "gather_error_metadata",
    "ErrorStatistics",
    "TrendAnalysis",
    "compute_statistics",
]
