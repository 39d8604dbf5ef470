"""
Health Monitoring
================

Health checkers polled by the error handling engine's monitoring loop.
"""

from .checkers import (
    HealthStatus,
    HealthCheck,
    HealthCheckDetails,
    IHealthChecker,
    DatabaseHealthChecker,
    APIHealthChecker,
    QueueHealthChecker,
    ProbeHealthChecker,
    ContentGenerationHealthChecker,
    LinkDiscoveryHealthChecker
)

__all__ = [
    "HealthStatus",
    "HealthCheck",
    "HealthCheckDetails",
    "IHealthChecker",
    "DatabaseHealthChecker",
    "APIHealthChecker",
    "QueueHealthChecker",
    "ProbeHealthChecker",
    "ContentGenerationHealthChecker",
    "LinkDiscoveryHealthChecker",
]
