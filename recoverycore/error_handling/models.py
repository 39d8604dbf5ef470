"""
Error Handling Data Model
========================

Types shared by the classifier, recovery handlers, alert engine and the
error handling engine.

Features:
- Severity and category taxonomy
- Error context with recovery bookkeeping
- Recovery actions and resolutions
- Error pattern aggregates
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_error_id() -> str:
    """Generate an ``error_<epoch ms>_<random>`` identifier."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"error_{int(time.time() * 1000)}_{suffix}"


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
    CATASTROPHIC = "catastrophic"


# Recovery attempt cap per severity
MAX_RECOVERY_ATTEMPTS: Dict[ErrorSeverity, int] = {
    ErrorSeverity.LOW: 3,
    ErrorSeverity.MEDIUM: 5,
    ErrorSeverity.HIGH: 8,
    ErrorSeverity.CRITICAL: 10,
    ErrorSeverity.CATASTROPHIC: 15,
}


def get_max_recovery_attempts(severity: ErrorSeverity) -> int:
    """Get the recovery attempt cap for a severity."""
    return MAX_RECOVERY_ATTEMPTS[severity]


class ErrorCategory(Enum):
    """Error categories for classification."""
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    CONTENT_GENERATION = "content_generation"
    LINK_DISCOVERY = "link_discovery"
    POSTING = "posting"
    VERIFICATION = "verification"
    DATABASE = "database"
    EXTERNAL_API = "external_api"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    RESOURCE_EXHAUSTION = "resource_exhaustion"
    TIMEOUT = "timeout"
    SECURITY = "security"
    DATA_CORRUPTION = "data_corruption"
    INFRASTRUCTURE = "infrastructure"


class ErrorState(Enum):
    """Lifecycle of a reported error."""
    REPORTED = "reported"
    RECOVERING = "recovering"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class RecoveryStrategy(Enum):
    """Recovery strategies known to the engine."""
    RETRY = "retry"
    FALLBACK = "fallback"
    CIRCUIT_BREAKER = "circuit_breaker"
    RATE_LIMIT_BACKOFF = "rate_limit_backoff"
    RESOURCE_SCALING = "resource_scaling"
    GRACEFUL_DEGRADATION = "graceful_degradation"
    FAILOVER = "failover"
    ROLLBACK = "rollback"


class Trend(Enum):
    """Direction of an error trend."""
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass
class NetworkConditions:
    """Network conditions at report time."""
    speed: str = "unknown"
    latency: float = 0.0
    packet_loss: float = 0.0
    connection_type: str = "unknown"
    is_online: bool = True
    bytes_sent: int = 0
    bytes_received: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "speed": self.speed,
            "latency": self.latency,
            "packet_loss": self.packet_loss,
            "connection_type": self.connection_type,
            "is_online": self.is_online,
            "bytes_sent": self.bytes_sent,
            "bytes_received": self.bytes_received
        }


@dataclass
class ResourceUsage:
    """Host resource usage snapshot."""
    memory_used: int = 0
    memory_available: int = 0
    memory_percentage: float = 0.0
    cpu_usage: float = 0.0
    cpu_cores: int = 1
    storage_used: int = 0
    storage_available: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "memory": {
                "used": self.memory_used,
                "available": self.memory_available,
                "percentage": self.memory_percentage
            },
            "cpu": {"usage": self.cpu_usage, "cores": self.cpu_cores},
            "storage": {"used": self.storage_used, "available": self.storage_available}
        }


@dataclass
class ErrorMetadata:
    """Environment metadata captured when an error is reported."""
    host: Optional[str] = None
    device: Optional[str] = None
    os: Optional[str] = None
    runtime: Optional[str] = None
    version: Optional[str] = None
    network_conditions: Optional[NetworkConditions] = None
    resource_usage: Optional[ResourceUsage] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "device": self.device,
            "os": self.os,
            "runtime": self.runtime,
            "version": self.version,
            "network_conditions": self.network_conditions.to_dict() if self.network_conditions else None,
            "resource_usage": self.resource_usage.to_dict() if self.resource_usage else None
        }


@dataclass
class ErrorDetails:
    """Payload of a reported error."""
    message: str
    code: str = "UNKNOWN_ERROR"
    stack: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)
    metadata: ErrorMetadata = field(default_factory=ErrorMetadata)
    original_error: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "stack": self.stack,
            "context": self.context,
            "metadata": self.metadata.to_dict()
        }


@dataclass
class SystemState:
    """Point-in-time snapshot of the automation system."""
    campaign_status: str = "active"
    queue_length: int = 0
    active_operations: int = 0
    system_load: float = 0.0
    database_connections: int = 0
    api_calls_remaining: int = 1000
    memory_usage: float = 0.0
    disk_space: float = 0.0
    network_latency: float = 0.0
    last_successful_operation: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "campaign_status": self.campaign_status,
            "queue_length": self.queue_length,
            "active_operations": self.active_operations,
            "system_load": self.system_load,
            "database_connections": self.database_connections,
            "api_calls_remaining": self.api_calls_remaining,
            "memory_usage": self.memory_usage,
            "disk_space": self.disk_space,
            "network_latency": self.network_latency,
            "last_successful_operation": (
                self.last_successful_operation.isoformat()
                if self.last_successful_operation else None
            )
        }


@dataclass
class RecoveryAction:
    """Single action taken while recovering. Duration is in milliseconds."""
    action: str
    success: bool
    duration: float
    timestamp: datetime = field(default_factory=utcnow)
    output: Any = None
    side_effects: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "success": self.success,
            "duration": self.duration,
            "output": self.output if isinstance(self.output, (str, int, float, bool, type(None))) else str(self.output),
            "side_effects": self.side_effects
        }


@dataclass
class ErrorResolution:
    """Outcome of a recovery attempt. Duration is in milliseconds."""
    strategy: RecoveryStrategy
    actions: List[RecoveryAction]
    duration: float
    success: bool
    final_state: SystemState
    lessons_learned: List[str] = field(default_factory=list)
    preventive_measures: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "actions": [action.to_dict() for action in self.actions],
            "duration": self.duration,
            "success": self.success,
            "final_state": self.final_state.to_dict(),
            "lessons_learned": self.lessons_learned,
            "preventive_measures": self.preventive_measures
        }


@dataclass
class ErrorPattern:
    """Aggregate of errors sharing component, category and code."""
    pattern: str
    frequency: int
    impact: ErrorSeverity
    trend: Trend = Trend.STABLE
    root_cause: Optional[str] = None
    prevention_strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.pattern,
            "frequency": self.frequency,
            "impact": self.impact.value,
            "trend": self.trend.value,
            "root_cause": self.root_cause,
            "prevention_strategy": self.prevention_strategy
        }


# Zero-argument coroutine function that re-runs a failed operation
RecoverableOperation = Callable[[], Awaitable[Any]]


@dataclass
class ErrorContext:
    """One recorded occurrence of an error."""
    error_id: str
    component: str
    operation: str
    severity: ErrorSeverity
    category: ErrorCategory
    error: ErrorDetails
    campaign_id: str = ""
    user_id: str = ""
    timestamp: datetime = field(default_factory=utcnow)
    system_state: SystemState = field(default_factory=SystemState)

    # Recovery bookkeeping
    recovery_attempts: int = 0
    max_recovery_attempts: int = 5
    resolved: bool = False
    resolution: Optional[ErrorResolution] = None
    state: ErrorState = ErrorState.REPORTED
    resolved_at: Optional[datetime] = None
    escalated_at: Optional[datetime] = None

    # Original fallible call, re-invoked by retrying strategies
    retry_operation: Optional[RecoverableOperation] = field(default=None, repr=False, compare=False)

    @property
    def pattern_key(self) -> str:
        return f"{self.component}_{self.category.value}_{self.error.code}"

    @property
    def is_terminal(self) -> bool:
        return self.state in (ErrorState.RESOLVED, ErrorState.ESCALATED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary."""
        return {
            "error_id": self.error_id,
            "campaign_id": self.campaign_id,
            "user_id": self.user_id,
            "component": self.component,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "category": self.category.value,
            "error": self.error.to_dict(),
            "system_state": self.system_state.to_dict(),
            "recovery_attempts": self.recovery_attempts,
            "max_recovery_attempts": self.max_recovery_attempts,
            "resolved": self.resolved,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "state": self.state.value,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None
        }

    def to_record(self) -> Dict[str, Any]:
        """Convert to an ``error_logs`` row."""
        return {
            "id": self.error_id,
            "campaign_id": self.campaign_id,
            "user_id": self.user_id,
            "component": self.component,
            "operation": self.operation,
            "severity": self.severity.value,
            "category": self.category.value,
            "error_details": self.error.to_dict(),
            "system_state": self.system_state.to_dict(),
            "recovery_attempts": self.recovery_attempts,
            "resolved": self.resolved,
            "resolution": self.resolution.to_dict() if self.resolution else None,
            "created_at": self.timestamp.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None
        }
