"""
Error Handling Engine
====================

Facade every automation subsystem reports failures to. Each reported error is
recorded, persisted, aggregated into patterns, checked against alert rules and
handed to a recovery strategy; failed recoveries are retried with exponential
backoff up to a severity-scaled cap, then escalated.

Features:
- Error context construction with environment and system state capture
- Pattern frequency and trend tracking
- Background recovery with per-attempt strategy selection
- Exactly-once escalation
- Per-resource circuit breakers and rate limiters
- Monitoring loop: health checks, log pruning, hot component detection,
  fallback queue replay
- Error statistics over a time range
"""

import asyncio
import logging
import traceback
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Set

import redis.asyncio as aioredis

from .alerting import (
    AlertEngine, AlertPriority, AlertRule, ChannelType, EmailChannel, NotificationTarget,
    PushChannel, SMSChannel, SMTPConfig, SlackChannel, WebhookChannel, default_alert_rules
)
from .config import Settings
from .database import DatabaseError, ErrorLogStoreFactory, FallbackQueue, IErrorLogStore, MemoryErrorLogStore
from .database.base import StorageBackend
from .error_handling.circuit_breaker import CircuitBreaker
from .error_handling.classifier import (
    categorize_error, classify_error_severity, get_error_code, get_error_message
)
from .error_handling.commands import CommandBus
from .error_handling.environment import SystemStateCollector, gather_error_metadata
from .error_handling.models import (
    ErrorCategory, ErrorContext, ErrorDetails, ErrorPattern, ErrorResolution, ErrorSeverity,
    ErrorState, RecoverableOperation, RecoveryStrategy, Trend, generate_error_id,
    get_max_recovery_attempts, utcnow
)
from .error_handling.rate_limiter import RateLimiter
from .error_handling.recovery_handlers import IRecoveryHandler, create_default_handlers
from .error_handling.statistics import ErrorStatistics, compute_statistics
from .health import (
    APIHealthChecker, ContentGenerationHealthChecker, DatabaseHealthChecker, HealthCheck,
    HealthStatus, IHealthChecker, LinkDiscoveryHealthChecker, QueueHealthChecker
)

logger = logging.getLogger(__name__)

_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CATASTROPHIC: logging.CRITICAL,
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


def select_recovery_strategy(error_context: ErrorContext) -> RecoveryStrategy:
    """Pick a strategy from category, severity and attempts so far."""
    if error_context.recovery_attempts > 3:
        return RecoveryStrategy.CIRCUIT_BREAKER

    category = error_context.category

    if category in (ErrorCategory.NETWORK, ErrorCategory.TIMEOUT):
        return RecoveryStrategy.RETRY
    elif category == ErrorCategory.RATE_LIMIT:
        return RecoveryStrategy.RATE_LIMIT_BACKOFF
    elif category == ErrorCategory.AUTHENTICATION:
        return RecoveryStrategy.FALLBACK
    elif category == ErrorCategory.DATABASE:
        if error_context.severity == ErrorSeverity.CRITICAL:
            return RecoveryStrategy.FAILOVER
        return RecoveryStrategy.RETRY
    elif category == ErrorCategory.RESOURCE_EXHAUSTION:
        return RecoveryStrategy.RESOURCE_SCALING
    elif category == ErrorCategory.EXTERNAL_API:
        return RecoveryStrategy.CIRCUIT_BREAKER

    return RecoveryStrategy.RETRY


def _parse_severity(value: Any) -> Optional[ErrorSeverity]:
    if value is None or isinstance(value, ErrorSeverity):
        return value
    try:
        return ErrorSeverity(str(value).lower())
    except ValueError:
        logger.warning(f"Unknown severity {value!r}, classifying from the error instead")
        return None


def _error_stack(error: Any) -> Optional[str]:
    if isinstance(error, Mapping):
        return error.get("stack")
    if isinstance(error, BaseException) and error.__traceback__ is not None:
        return "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return None


class ErrorHandlingEngine:
    """
    Error recording and recovery orchestrator.

    Construct one instance at process start and pass it to the subsystems
    that report errors.
    """

    def __init__(self,
                 store: Optional[IErrorLogStore] = None,
                 alert_engine: Optional[AlertEngine] = None,
                 command_bus: Optional[CommandBus] = None,
                 handlers: Optional[Dict[RecoveryStrategy, IRecoveryHandler]] = None,
                 health_checkers: Optional[List[IHealthChecker]] = None,
                 fallback_queue: Optional[FallbackQueue] = None,
                 state_collector: Optional[SystemStateCollector] = None,
                 base_delay: float = 1.0,
                 operation_timeout: float = 30.0,
                 monitoring_interval: float = 60.0,
                 retention_days: int = 7,
                 trend_threshold: int = 5,
                 breaker_failure_threshold: int = 5,
                 breaker_reset_timeout: float = 30.0,
                 version: str = "1.0.0"):
        self.store = store or MemoryErrorLogStore()
        self.alert_engine = alert_engine or AlertEngine(rules=default_alert_rules())
        self.command_bus = command_bus or CommandBus()
        self.fallback_queue = fallback_queue
        self.state_collector = state_collector or SystemStateCollector()

        self.base_delay = base_delay
        self.monitoring_interval = monitoring_interval
        self.retention_days = retention_days
        self.trend_threshold = trend_threshold
        self.breaker_failure_threshold = breaker_failure_threshold
        self.breaker_reset_timeout = breaker_reset_timeout
        self.version = version

        # Owned state
        self.error_log: List[ErrorContext] = []
        self.error_patterns: Dict[str, ErrorPattern] = {}
        self.circuit_breakers: Dict[str, CircuitBreaker] = {}
        self.rate_limiters: Dict[str, RateLimiter] = {}
        self.health_checkers: Dict[str, IHealthChecker] = {}
        self.health_status: Dict[str, HealthCheck] = {}

        self.handlers = handlers or create_default_handlers(
            self.command_bus,
            breaker_lookup=self.get_circuit_breaker,
            base_delay=base_delay,
            operation_timeout=operation_timeout,
            state_provider=self._capture_state
        )

        for checker in health_checkers or []:
            self.register_health_checker(checker)

        # Background tasks
        self._recovery_tasks: Set[asyncio.Task] = set()
        self._monitoring_task: Optional[asyncio.Task] = None

        # Statistics
        self.errors_handled = 0
        self.errors_resolved = 0
        self.errors_escalated = 0

    @classmethod
    def from_settings(cls, settings: Settings, redis_client: Any = None) -> "ErrorHandlingEngine":
        """Build a fully wired engine from settings."""
        engine_cfg = settings.engine
        persistence = settings.persistence
        alerting = settings.alerting
        health = settings.health

        store = ErrorLogStoreFactory.create_store(
            StorageBackend(persistence.backend),
            dsn=persistence.dsn,
            table_name=persistence.table_name,
            pool_size=persistence.pool_size,
            command_timeout=persistence.command_timeout
        )

        fallback_queue = None
        if persistence.fallback_dir:
            fallback_queue = FallbackQueue(persistence.fallback_dir, persistence.fallback_max_entries)

        channels = [
            EmailChannel(SMTPConfig(
                host=alerting.smtp_host or None,
                port=int(alerting.smtp_port),
                username=alerting.smtp_username or None,
                password=alerting.smtp_password or None,
                from_address=alerting.smtp_from,
                use_tls=alerting.smtp_use_tls,
                timeout=alerting.notification_timeout
            )),
            SlackChannel(alerting.slack_webhook_url or None, timeout=alerting.notification_timeout),
            WebhookChannel(timeout=alerting.notification_timeout),
            SMSChannel(alerting.twilio_account_sid or None, alerting.twilio_auth_token or None,
                       alerting.twilio_from_number or None),
            PushChannel(),
        ]

        rules: List[AlertRule] = []
        if alerting.use_default_rules:
            rules.extend(default_alert_rules(alerting.alerts_email, alerting.oncall_email,
                                             alerting.slack_channel))
        rules.extend(AlertRule.from_dict(rule) for rule in alerting.rules)

        alert_engine = AlertEngine(
            channels=channels,
            rules=rules,
            escalation_target=NotificationTarget(
                ChannelType(alerting.escalation_channel),
                alerting.escalation_target,
                AlertPriority.URGENT
            ),
            notification_timeout=alerting.notification_timeout
        )

        if redis_client is None and health.redis_url:
            redis_client = aioredis.from_url(health.redis_url)

        checker_kwargs = {"timeout": health.probe_timeout, "version": settings.version}
        health_checkers = [
            DatabaseHealthChecker(store, **checker_kwargs),
            APIHealthChecker(health.status_url or None, **checker_kwargs),
            QueueHealthChecker(redis_client, health.queue_key, health.queue_backlog_warning,
                               **checker_kwargs),
            ContentGenerationHealthChecker(min_success_rate=health.min_success_rate, **checker_kwargs),
            LinkDiscoveryHealthChecker(min_success_rate=health.min_success_rate, **checker_kwargs),
        ]

        return cls(
            store=store,
            alert_engine=alert_engine,
            command_bus=CommandBus(executor_timeout=engine_cfg.executor_timeout),
            health_checkers=health_checkers,
            fallback_queue=fallback_queue,
            base_delay=engine_cfg.base_delay,
            operation_timeout=engine_cfg.operation_timeout,
            monitoring_interval=engine_cfg.monitoring_interval,
            retention_days=engine_cfg.retention_days,
            trend_threshold=engine_cfg.trend_threshold,
            breaker_failure_threshold=engine_cfg.breaker_failure_threshold,
            breaker_reset_timeout=engine_cfg.breaker_reset_timeout,
            version=settings.version
        )

    async def start(self):
        """Connect the store and start the monitoring loop."""
        await self.store.connect()
        self.start_monitoring()

    # Error intake

    async def handle_error(self, error: Any, context: Optional[Mapping[str, Any]] = None,
                           retry_operation: Optional[RecoverableOperation] = None) -> ErrorContext:
        """
        Record an error and start recovering from it.

        Args:
            error: Exception or mapping with ``message``, optional ``code`` and ``stack``
            context: ``component``, ``operation`` and optionally ``campaign_id``,
                ``user_id``, ``severity`` and ``metadata``
            retry_operation: Zero-argument coroutine function re-running the
                failed call, used by retrying strategies

        Returns:
            The error context; recovery continues in the background and
            mutates it as it progresses
        """
        context = dict(context or {})

        severity = _parse_severity(context.get("severity")) or classify_error_severity(error)
        category = categorize_error(error, context)

        error_context = ErrorContext(
            error_id=generate_error_id(),
            component=context.get("component", "unknown"),
            operation=context.get("operation", "unknown"),
            severity=severity,
            category=category,
            error=ErrorDetails(
                message=get_error_message(error),
                code=get_error_code(error) or "UNKNOWN_ERROR",
                stack=_error_stack(error),
                context=dict(context.get("metadata") or {}),
                metadata=gather_error_metadata(self.version),
                original_error=error if isinstance(error, BaseException) else None
            ),
            campaign_id=context.get("campaign_id") or "",
            user_id=context.get("user_id") or "",
            system_state=await self._capture_state(),
            max_recovery_attempts=get_max_recovery_attempts(severity),
            retry_operation=retry_operation
        )

        self.error_log.append(error_context)
        self.errors_handled += 1
        self._log_error(error_context)

        await self.persist_error(error_context)
        self.update_error_patterns(error_context)
        await self.alert_engine.check_alert_conditions(error_context, self.error_log)

        self._schedule_recovery(error_context)

        return error_context

    def _log_error(self, error_context: ErrorContext):
        level = _SEVERITY_LOG_LEVELS[error_context.severity]
        logger.log(
            level,
            f"[{error_context.severity.value}] {error_context.component}.{error_context.operation}: "
            f"{error_context.error.message} ({error_context.error_id})"
        )

    async def _capture_state(self):
        return await self.state_collector.capture(active_operations=len(self._recovery_tasks))

    # Persistence

    async def persist_error(self, error_context: ErrorContext) -> bool:
        """
        Write the error record, spooling it locally if the store fails.

        Returns:
            True if the primary store accepted the record
        """
        record = error_context.to_record()

        try:
            await self.store.save_error(record)
            return True
        except DatabaseError as e:
            logger.error(f"Failed to persist error {error_context.error_id}: {e}")
        except Exception as e:
            logger.error(f"Unexpected store failure persisting error {error_context.error_id}: {e}")

        if self.fallback_queue is None:
            logger.error(f"No fallback queue configured, error {error_context.error_id} not persisted")
            return False

        try:
            self.fallback_queue.enqueue(record)
        except OSError as e:
            logger.error(f"Failed to spool error {error_context.error_id}: {e}")

        return False

    async def get_recent_errors(self, limit: int = 50) -> List[Dict[str, Any]]:
        return await self.store.get_recent_errors(limit)

    async def mark_error_resolved(self, error_id: str) -> bool:
        """Mark an error resolved by hand."""
        for error_context in self.error_log:
            if error_context.error_id == error_id and not error_context.resolved:
                error_context.resolved = True
                error_context.state = ErrorState.RESOLVED
                error_context.resolved_at = utcnow()

        try:
            return await self.store.mark_resolved(error_id)
        except DatabaseError as e:
            logger.error(f"Failed to mark error {error_id} resolved: {e}")
            return False

    # Patterns

    def update_error_patterns(self, error_context: ErrorContext, now: Optional[datetime] = None):
        """Update the frequency and trend of the error's pattern."""
        key = error_context.pattern_key
        pattern = self.error_patterns.get(key)

        if pattern is None:
            self.error_patterns[key] = ErrorPattern(
                pattern=key,
                frequency=1,
                impact=error_context.severity,
                trend=Trend.STABLE
            )
            return

        pattern.frequency += 1
        pattern.impact = error_context.severity

        hour_ago = (now or utcnow()) - timedelta(hours=1)
        recent = sum(
            1 for e in self.error_log
            if e.component == error_context.component
            and e.category == error_context.category
            and e.timestamp > hour_ago
        )

        if recent > pattern.frequency * 0.5:
            pattern.trend = Trend.INCREASING
        elif recent < pattern.frequency * 0.1:
            pattern.trend = Trend.DECREASING
        else:
            pattern.trend = Trend.STABLE

    # Recovery

    select_recovery_strategy = staticmethod(select_recovery_strategy)

    def _schedule_recovery(self, error_context: ErrorContext, delay: float = 0.0):
        task = asyncio.create_task(self._run_recovery(error_context, delay))
        self._recovery_tasks.add(task)
        task.add_done_callback(self._recovery_tasks.discard)

    async def _run_recovery(self, error_context: ErrorContext, delay: float):
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await self.attempt_recovery(error_context)
        except Exception as e:
            logger.error(f"Recovery attempt failed for {error_context.error_id}: {e}")

    async def attempt_recovery(self, error_context: ErrorContext) -> Optional[ErrorResolution]:
        """
        Run one recovery attempt.

        On failure the next attempt is scheduled after ``2 ** attempts *
        base_delay`` seconds, or the error is escalated once the attempt cap
        is reached.
        """
        if error_context.is_terminal:
            return None

        if error_context.recovery_attempts >= error_context.max_recovery_attempts:
            await self.escalate_error(error_context)
            return None

        strategy = self.select_recovery_strategy(error_context)
        handler = self.handlers.get(strategy)

        if handler is None:
            logger.warning(f"No recovery handler found for strategy: {strategy.value}")
            await self.escalate_error(error_context)
            return None

        error_context.state = ErrorState.RECOVERING
        error_context.recovery_attempts += 1

        resolution = await handler.recover(error_context)

        if resolution.success:
            error_context.resolved = True
            error_context.resolution = resolution
            error_context.state = ErrorState.RESOLVED
            error_context.resolved_at = utcnow()
            self.errors_resolved += 1
            self.state_collector.record_success()

            await self.persist_error(error_context)
            logger.info(f"Error {error_context.error_id} recovered using {strategy.value}")

        elif error_context.recovery_attempts < error_context.max_recovery_attempts:
            delay = (2 ** error_context.recovery_attempts) * self.base_delay
            logger.info(
                f"Recovery attempt {error_context.recovery_attempts}/{error_context.max_recovery_attempts} "
                f"failed for {error_context.error_id} ({strategy.value}), retrying in {delay}s"
            )
            await self.persist_error(error_context)
            self._schedule_recovery(error_context, delay)

        else:
            logger.error(
                f"Failed to recover error {error_context.error_id} "
                f"after {error_context.recovery_attempts} attempts"
            )
            await self.escalate_error(error_context)

        return resolution

    async def escalate_error(self, error_context: ErrorContext):
        """Send the escalation alert. Only the first call per error has any effect."""
        if error_context.escalated_at is not None:
            return

        error_context.state = ErrorState.ESCALATED
        error_context.escalated_at = utcnow()
        self.errors_escalated += 1

        await self.alert_engine.escalate(error_context)
        await self.persist_error(error_context)

    async def wait_for_recoveries(self):
        """Wait until no recovery attempt is pending, including retries scheduled meanwhile."""
        while self._recovery_tasks:
            await asyncio.gather(*list(self._recovery_tasks), return_exceptions=True)

    # Protection registries

    def get_circuit_breaker(self, name: str) -> CircuitBreaker:
        """Get or create the circuit breaker for a resource."""
        if name not in self.circuit_breakers:
            self.circuit_breakers[name] = CircuitBreaker(
                name,
                failure_threshold=self.breaker_failure_threshold,
                reset_timeout=self.breaker_reset_timeout
            )
        return self.circuit_breakers[name]

    def get_rate_limiter(self, name: str, max_requests: int = 100,
                         window_seconds: float = 60.0) -> RateLimiter:
        """Get or create the rate limiter for a resource."""
        if name not in self.rate_limiters:
            self.rate_limiters[name] = RateLimiter(name, max_requests, window_seconds)
        return self.rate_limiters[name]

    async def protect(self, name: str, operation: RecoverableOperation) -> Any:
        """
        Run an operation behind the resource's breaker, and its rate limiter
        when one has been registered.
        """
        breaker = self.get_circuit_breaker(name)
        limiter = self.rate_limiters.get(name)

        if limiter is None:
            return await breaker.execute(operation)
        return await limiter.execute(breaker.execute, operation)

    # Monitoring

    def register_health_checker(self, checker: IHealthChecker):
        self.health_checkers[checker.component] = checker

    def start_monitoring(self):
        """Start the background monitoring loop."""
        if self._monitoring_task and not self._monitoring_task.done():
            return
        self._monitoring_task = asyncio.create_task(self._monitoring_loop())
        logger.info(f"Error monitoring started (interval {self.monitoring_interval}s)")

    async def _monitoring_loop(self):
        while True:
            await asyncio.sleep(self.monitoring_interval)
            try:
                await self.run_monitoring_cycle()
            except Exception as e:
                logger.error(f"Monitoring loop error: {e}")

    async def run_monitoring_cycle(self):
        """One pass of the monitoring loop."""
        await self.run_health_checks()
        self.cleanup_old_errors()
        self.analyze_error_trends()
        if self.fallback_queue is not None:
            await self.fallback_queue.drain(self.store)

    async def run_health_checks(self) -> Dict[str, HealthCheck]:
        """Run every health checker concurrently and log non-healthy results."""
        checkers = list(self.health_checkers.values())
        results = await asyncio.gather(*(checker.check() for checker in checkers))

        for result in results:
            self.health_status[result.component] = result
            if result.status == HealthStatus.UNHEALTHY:
                logger.error(f"Component {result.component} is unhealthy: {result.details.errors}")
            elif result.status == HealthStatus.DEGRADED:
                logger.warning(f"Component {result.component} is degraded: {result.details.warnings}")

        return dict(self.health_status)

    def cleanup_old_errors(self, now: Optional[datetime] = None) -> int:
        """Drop log entries older than the retention period. Returns the number removed."""
        cutoff = (now or utcnow()) - timedelta(days=self.retention_days)
        before = len(self.error_log)
        self.error_log = [e for e in self.error_log if e.timestamp >= cutoff]
        removed = before - len(self.error_log)

        if removed:
            logger.info(f"Pruned {removed} errors older than {self.retention_days} days")
        return removed

    def analyze_error_trends(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Count last-hour errors per component and warn about busy ones.

        Returns:
            Components above the threshold with their counts
        """
        hour_ago = (now or utcnow()) - timedelta(hours=1)
        counts: Dict[str, int] = {}
        for error_context in self.error_log:
            if error_context.timestamp > hour_ago:
                counts[error_context.component] = counts.get(error_context.component, 0) + 1

        hot = {component: count for component, count in counts.items() if count > self.trend_threshold}
        for component, count in hot.items():
            logger.warning(f"High error rate detected in {component}: {count} errors in last hour")
        return hot

    # Queries

    def get_error_statistics(self, start: datetime, end: datetime) -> ErrorStatistics:
        """Statistics for errors with ``start <= timestamp <= end``."""
        errors = [e for e in self.error_log if start <= e.timestamp <= end]
        return compute_statistics(errors, self.error_patterns.values())

    def get_health_status(self) -> Dict[str, HealthCheck]:
        return dict(self.health_status)

    def get_engine_stats(self) -> Dict[str, Any]:
        return {
            "errors_handled": self.errors_handled,
            "errors_resolved": self.errors_resolved,
            "errors_escalated": self.errors_escalated,
            "error_log_size": len(self.error_log),
            "patterns_count": len(self.error_patterns),
            "pending_recoveries": len(self._recovery_tasks),
            "circuit_breakers": {name: b.get_stats() for name, b in self.circuit_breakers.items()},
            "rate_limiters": {name: l.get_stats() for name, l in self.rate_limiters.items()},
            "fallback_pending": len(self.fallback_queue) if self.fallback_queue is not None else 0
        }

    # Lifecycle

    async def shutdown(self, cancel_pending: bool = False):
        """
        Stop the monitoring loop.

        Scheduled recovery attempts keep running unless ``cancel_pending`` is set.
        """
        if self._monitoring_task:
            self._monitoring_task.cancel()
            try:
                await self._monitoring_task
            except asyncio.CancelledError:
                pass
            self._monitoring_task = None

        if cancel_pending:
            tasks = list(self._recovery_tasks)
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Error handling engine shutdown complete")

    async def close(self):
        """Shut down, cancelling pending recoveries, and release the store."""
        await self.shutdown(cancel_pending=True)
        await self.store.close()
