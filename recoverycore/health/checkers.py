"""
Health Checkers
==============

Probes reporting the live status of the subsystems the automation platform
depends on.

Features:
- Common ``check()`` contract that never raises
- Per-probe timeouts
- Database, status API, job queue, content generation and link discovery probes
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
from redis.exceptions import RedisError

from ..database.base import DatabaseError, IErrorLogStore

logger = logging.getLogger(__name__)


class HealthStatus(Enum):
    """Component health status."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class HealthCheckDetails:
    """Details block of a health check."""
    uptime: float = 0.0
    version: str = "1.0.0"
    metrics: Dict[str, float] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    custom_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uptime": self.uptime,
            "version": self.version,
            "metrics": self.metrics,
            "errors": self.errors,
            "warnings": self.warnings,
            "custom_data": self.custom_data
        }


@dataclass
class HealthCheck:
    """Result of one health check. Response time is in milliseconds."""
    component: str
    status: HealthStatus
    response_time: float
    last_checked: datetime
    details: HealthCheckDetails
    dependencies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "status": self.status.value,
            "response_time": self.response_time,
            "last_checked": self.last_checked.isoformat(),
            "details": self.details.to_dict(),
            "dependencies": self.dependencies
        }


class IHealthChecker(ABC):
    """Interface for health checkers."""

    component: str = "unknown"
    dependencies: List[str] = []

    def __init__(self, timeout: float = 5.0, version: str = "1.0.0"):
        self.timeout = timeout
        self.version = version
        self._started = time.monotonic()

    async def check(self) -> HealthCheck:
        """Run the probe. Failures are reported in the result, never raised."""
        start = time.monotonic()
        details = HealthCheckDetails(uptime=start - self._started, version=self.version)

        try:
            status = await asyncio.wait_for(self._probe(details), timeout=self.timeout)
        except asyncio.TimeoutError:
            status = HealthStatus.UNHEALTHY
            details.errors.append(f"Health probe timed out after {self.timeout}s")
        except Exception as e:
            status = HealthStatus.UNHEALTHY
            details.errors.append(str(e))

        response_time = (time.monotonic() - start) * 1000
        details.metrics.setdefault("response_time", response_time)

        return HealthCheck(
            component=self.component,
            status=status,
            response_time=response_time,
            last_checked=datetime.now(timezone.utc),
            details=details,
            dependencies=list(self.dependencies)
        )

    @abstractmethod
    async def _probe(self, details: HealthCheckDetails) -> HealthStatus:
        """Probe the subsystem, filling ``details`` as it goes."""
        pass


class DatabaseHealthChecker(IHealthChecker):
    """Issues a trivial read against the error log store."""

    component = "database"

    def __init__(self, store: IErrorLogStore, **kwargs):
        super().__init__(**kwargs)
        self.store = store

    async def _probe(self, details: HealthCheckDetails) -> HealthStatus:
        try:
            rows = await self.store.probe()
        except DatabaseError as e:
            details.errors.append(str(e))
            return HealthStatus.UNHEALTHY

        details.metrics["rows_read"] = rows
        details.metrics["connection_count"] = 1
        return HealthStatus.HEALTHY


class APIHealthChecker(IHealthChecker):
    """GETs the platform's status endpoint."""

    component = "api"
    dependencies = ["database"]

    def __init__(self, status_url: Optional[str] = None, slow_threshold: float = 2.0, **kwargs):
        super().__init__(**kwargs)
        self.status_url = status_url
        self.slow_threshold = slow_threshold

    async def _probe(self, details: HealthCheckDetails) -> HealthStatus:
        if not self.status_url:
            details.warnings.append("No status URL configured")
            return HealthStatus.UNKNOWN

        start = time.monotonic()
        try:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.status_url) as response:
                    status_code = response.status
        except aiohttp.ClientError as e:
            details.errors.append(f"Status endpoint unreachable: {e}")
            return HealthStatus.UNHEALTHY

        elapsed = time.monotonic() - start
        details.metrics["status_code"] = status_code
        details.metrics["response_time"] = elapsed * 1000

        if status_code >= 500:
            details.errors.append(f"Status endpoint returned {status_code}")
            return HealthStatus.UNHEALTHY
        if status_code >= 400:
            details.warnings.append(f"Status endpoint returned {status_code}")
            return HealthStatus.DEGRADED
        if elapsed > self.slow_threshold:
            details.warnings.append(f"Status endpoint slow: {elapsed:.2f}s")
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY


class QueueHealthChecker(IHealthChecker):
    """Reads the automation job queue backlog from Redis."""

    component = "queue"

    def __init__(self, redis_client: Any = None, queue_key: str = "automation:jobs",
                 backlog_warning: int = 1000, **kwargs):
        super().__init__(**kwargs)
        self.redis_client = redis_client
        self.queue_key = queue_key
        self.backlog_warning = backlog_warning

    async def _probe(self, details: HealthCheckDetails) -> HealthStatus:
        if self.redis_client is None:
            details.warnings.append("No queue backend configured")
            return HealthStatus.UNKNOWN

        try:
            length = await self.redis_client.llen(self.queue_key)
        except RedisError as e:
            details.errors.append(f"Queue backend error: {e}")
            return HealthStatus.UNHEALTHY

        details.metrics["queue_length"] = length

        if length > self.backlog_warning:
            details.warnings.append(f"Queue backlog {length} exceeds {self.backlog_warning}")
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY


MetricsProbe = Callable[[], Awaitable[Dict[str, float]]]


class ProbeHealthChecker(IHealthChecker):
    """
    Checker driven by an async probe supplied by the owning subsystem.

    The probe returns a metrics mapping; a ``success_rate`` below
    ``min_success_rate`` marks the component degraded.
    """

    def __init__(self, probe: Optional[MetricsProbe] = None, min_success_rate: float = 80.0, **kwargs):
        super().__init__(**kwargs)
        self.probe = probe
        self.min_success_rate = min_success_rate

    async def _probe(self, details: HealthCheckDetails) -> HealthStatus:
        if self.probe is None:
            details.warnings.append(f"No probe registered for {self.component}")
            return HealthStatus.UNKNOWN

        metrics = await self.probe()
        details.metrics.update(metrics)

        success_rate = metrics.get("success_rate")
        if success_rate is not None and success_rate < self.min_success_rate:
            details.warnings.append(f"Success rate {success_rate}% below {self.min_success_rate}%")
            return HealthStatus.DEGRADED

        return HealthStatus.HEALTHY


class ContentGenerationHealthChecker(ProbeHealthChecker):
    component = "content_generation"
    dependencies = ["api"]


class LinkDiscoveryHealthChecker(ProbeHealthChecker):
    component = "link_discovery"
    dependencies = ["api", "database"]
