"""
Unit Tests for the Error Handling Engine
=======================================

Covers the error lifecycle (reported, recovering, resolved or escalated),
persistence fallback, monitoring housekeeping and statistics.
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from recoverycore.alerting import (
    AlertCondition, AlertEngine, AlertRule, ChannelType, ConditionOperator, INotificationChannel,
    NotificationTarget, SuppressionRule, default_alert_rules
)
from recoverycore.config import Settings
from recoverycore.database import ConnectionError, FallbackQueue, MemoryErrorLogStore
from recoverycore.database.postgresql_store import PostgreSQLErrorLogStore
from recoverycore.engine import ErrorHandlingEngine, select_recovery_strategy
from recoverycore.error_handling import (
    CircuitOpenError, CircuitState, ErrorCategory, ErrorContext, ErrorDetails, ErrorResolution,
    ErrorSeverity, ErrorState, RateLimitExceededError, RecoveryStrategy, ReportedError,
    SystemState, Trend, generate_error_id, utcnow
)
from recoverycore.health import ContentGenerationHealthChecker, HealthStatus


class RecordingChannel(INotificationChannel):

    def __init__(self, channel_type: ChannelType):
        self.channel_type = channel_type
        self.sent = []

    async def send(self, target, message, error_context):
        self.sent.append((target, error_context.error_id))


class FlakyStore(MemoryErrorLogStore):
    """Store that rejects writes while ``failing`` is set."""

    def __init__(self):
        super().__init__()
        self.failing = True

    async def save_error(self, record):
        if self.failing:
            raise ConnectionError("database unreachable")
        await super().save_error(record)


class ClosingPoolStore(MemoryErrorLogStore):
    """Store whose driver fails with an error outside the DatabaseError family."""

    async def save_error(self, record):
        raise asyncpg.InterfaceError("pool is closing")


def failing_pool(error):
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=error)
    acquire_ctx = MagicMock()
    acquire_ctx.__aenter__ = AsyncMock(return_value=conn)
    acquire_ctx.__aexit__ = AsyncMock(return_value=False)
    pool = MagicMock()
    pool.acquire.return_value = acquire_ctx
    return pool


@pytest.fixture
def email():
    return RecordingChannel(ChannelType.EMAIL)


@pytest.fixture
def slack():
    return RecordingChannel(ChannelType.SLACK)


@pytest.fixture
def engine(email, slack):
    alert_engine = AlertEngine(channels=[email, slack], rules=[])
    return ErrorHandlingEngine(alert_engine=alert_engine, base_delay=0)


def make_context(component="posting", category=ErrorCategory.NETWORK, severity=ErrorSeverity.HIGH,
                 attempts=0, age=timedelta(0)) -> ErrorContext:
    return ErrorContext(
        error_id=generate_error_id(),
        component=component,
        operation="submit_post",
        severity=severity,
        category=category,
        error=ErrorDetails(message="Network unreachable"),
        timestamp=utcnow() - age,
        recovery_attempts=attempts
    )


class TestStrategySelection:

    def test_switches_to_circuit_breaker_after_three_attempts(self):
        chosen = [
            select_recovery_strategy(make_context(attempts=attempts))
            for attempts in (1, 2, 3, 4)
        ]
        assert chosen == [RecoveryStrategy.RETRY] * 3 + [RecoveryStrategy.CIRCUIT_BREAKER]

    @pytest.mark.parametrize("category,severity,expected", [
        (ErrorCategory.NETWORK, ErrorSeverity.LOW, RecoveryStrategy.RETRY),
        (ErrorCategory.TIMEOUT, ErrorSeverity.HIGH, RecoveryStrategy.RETRY),
        (ErrorCategory.RATE_LIMIT, ErrorSeverity.MEDIUM, RecoveryStrategy.RATE_LIMIT_BACKOFF),
        (ErrorCategory.AUTHENTICATION, ErrorSeverity.HIGH, RecoveryStrategy.FALLBACK),
        (ErrorCategory.DATABASE, ErrorSeverity.CRITICAL, RecoveryStrategy.FAILOVER),
        (ErrorCategory.DATABASE, ErrorSeverity.HIGH, RecoveryStrategy.RETRY),
        (ErrorCategory.RESOURCE_EXHAUSTION, ErrorSeverity.HIGH, RecoveryStrategy.RESOURCE_SCALING),
        (ErrorCategory.EXTERNAL_API, ErrorSeverity.LOW, RecoveryStrategy.CIRCUIT_BREAKER),
        (ErrorCategory.POSTING, ErrorSeverity.LOW, RecoveryStrategy.RETRY),
    ])
    def test_category_table(self, category, severity, expected):
        context = make_context(category=category, severity=severity)
        assert select_recovery_strategy(context) == expected


class TestHandleError:

    @pytest.mark.asyncio
    async def test_builds_context(self, engine):
        error = ReportedError("Network timeout while calling API", code="NETWORK_TIMEOUT")
        context = await engine.handle_error(error, {
            "component": "content_generation",
            "operation": "generate_article",
            "campaign_id": "campaign_7",
            "metadata": {"keyword": "running shoes"},
        })

        assert context.severity == ErrorSeverity.HIGH
        assert context.category == ErrorCategory.NETWORK
        assert context.max_recovery_attempts == 8
        assert context.error.code == "NETWORK_TIMEOUT"
        assert context.error.context == {"keyword": "running shoes"}
        assert context.error.metadata.version == "1.0.0"
        assert context.campaign_id == "campaign_7"
        assert engine.error_log == [context]
        assert context.error_id in engine.store.records

        await engine.shutdown(cancel_pending=True)

    @pytest.mark.asyncio
    async def test_explicit_severity_sets_attempt_cap(self, engine):
        context = await engine.handle_error(Exception("odd"), {
            "component": "payment", "operation": "charge", "severity": "catastrophic"
        })

        assert context.severity == ErrorSeverity.CATASTROPHIC
        assert context.max_recovery_attempts == 15
        await engine.shutdown(cancel_pending=True)

    @pytest.mark.asyncio
    async def test_unknown_severity_falls_back_to_classification(self, engine):
        context = await engine.handle_error(Exception("network unreachable"), {
            "component": "posting", "operation": "submit_post", "severity": "sev1"
        })

        assert context.severity == ErrorSeverity.HIGH
        assert context.max_recovery_attempts == 8
        await engine.shutdown(cancel_pending=True)

    @pytest.mark.asyncio
    async def test_mapping_error(self, engine):
        context = await engine.handle_error(
            {"message": "validation failed", "code": "BAD_URL", "stack": "trace"},
            {"component": "posting", "operation": "submit_post"}
        )

        assert context.severity == ErrorSeverity.MEDIUM
        assert context.category == ErrorCategory.POSTING
        assert context.error.stack == "trace"
        await engine.shutdown(cancel_pending=True)

    @pytest.mark.asyncio
    async def test_successful_retry_resolves(self, engine):
        operation = AsyncMock(return_value="posted")

        context = await engine.handle_error(
            Exception("network unreachable"),
            {"component": "posting", "operation": "submit_post"},
            retry_operation=operation
        )
        await engine.wait_for_recoveries()

        assert context.resolved is True
        assert context.state == ErrorState.RESOLVED
        assert context.recovery_attempts == 1
        assert context.resolution.strategy == RecoveryStrategy.RETRY
        assert context.resolved_at is not None
        assert engine.store.records[context.error_id]["resolved"] is True
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_recovery_escalates_exactly_once(self, engine, email):
        operation = AsyncMock(side_effect=RuntimeError("still broken"))

        context = await engine.handle_error(
            Exception("something odd happened"),
            {"component": "verification", "operation": "check_link"},
            retry_operation=operation
        )
        await engine.wait_for_recoveries()

        assert context.severity == ErrorSeverity.LOW
        assert context.recovery_attempts == context.max_recovery_attempts == 3
        assert context.state == ErrorState.ESCALATED
        assert context.resolved is False
        assert operation.await_count == 3

        escalations = [a for a in engine.alert_engine.alerts_sent if a.rule_id.startswith("escalation_")]
        assert len(escalations) == 1
        assert email.sent == [("ops@company.com", context.error_id)]

        await engine.escalate_error(context)
        assert await engine.attempt_recovery(context) is None
        assert context.recovery_attempts == 3
        assert len(email.sent) == 1

    @pytest.mark.asyncio
    async def test_escalation_alert_sent_when_store_fails(self, email):
        engine = ErrorHandlingEngine(
            store=ClosingPoolStore(),
            alert_engine=AlertEngine(channels=[email], rules=[]),
            base_delay=0
        )
        context = make_context(severity=ErrorSeverity.LOW, attempts=3)
        context.max_recovery_attempts = 3

        await engine.attempt_recovery(context)
        await engine.escalate_error(context)

        assert context.state == ErrorState.ESCALATED
        assert email.sent == [("ops@company.com", context.error_id)]

    @pytest.mark.asyncio
    async def test_strategy_escalates_to_circuit_breaker(self, engine):
        operation = AsyncMock(side_effect=RuntimeError("still broken"))

        context = await engine.handle_error(
            Exception("network unreachable"),
            {"component": "posting", "operation": "submit_post"},
            retry_operation=operation
        )
        await engine.wait_for_recoveries()

        assert context.max_recovery_attempts == 8
        assert context.recovery_attempts == 8
        assert operation.await_count == 4
        assert engine.get_circuit_breaker("posting").state == CircuitState.OPEN

        actions = [entry["command"]["action"] for entry in engine.command_bus.get_history(context.error_id)]
        assert actions == ["open_circuit_breaker"] * 4

    @pytest.mark.asyncio
    async def test_command_strategy_resolves_when_executor_accepts(self, engine):
        executor = AsyncMock(return_value=True)
        engine.command_bus.subscribe(executor)

        context = await engine.handle_error(
            Exception("auth token rejected"),
            {"component": "posting", "operation": "login"}
        )
        await engine.wait_for_recoveries()

        assert context.resolved is True
        assert context.resolution.strategy == RecoveryStrategy.FALLBACK
        assert context.resolution.final_state.campaign_status == "fallback_mode"
        assert executor.await_args.args[0].action == "activate_fallback_service"

    @pytest.mark.asyncio
    async def test_attempts_never_exceed_cap(self, engine):
        context = make_context(severity=ErrorSeverity.LOW)
        context.max_recovery_attempts = 3
        context.recovery_attempts = 3

        assert await engine.attempt_recovery(context) is None
        assert context.recovery_attempts == 3
        assert context.state == ErrorState.ESCALATED


class TestAlerting:

    @pytest.mark.asyncio
    async def test_critical_errors_rule_fires(self, email, slack):
        alert_engine = AlertEngine(channels=[email, slack], rules=default_alert_rules())
        engine = ErrorHandlingEngine(alert_engine=alert_engine, base_delay=0)
        engine.command_bus.subscribe(AsyncMock(return_value=True))

        first = await engine.handle_error(Exception("fatal database crash"),
                                          {"component": "database", "operation": "write"})
        assert email.sent == []

        second = await engine.handle_error(Exception("fatal database crash"),
                                           {"component": "database", "operation": "write"})
        await engine.wait_for_recoveries()

        assert first.severity == ErrorSeverity.CRITICAL
        assert ("oncall@company.com", second.error_id) in email.sent
        assert ("#alerts", second.error_id) in slack.sent
        assert second.resolution.strategy == RecoveryStrategy.FAILOVER

    @pytest.mark.asyncio
    async def test_suppressed_component_never_alerts(self, email):
        rule = AlertRule(
            id="any_error",
            name="Any Error",
            condition=AlertCondition("error_count", ConditionOperator.GT, 0, time_window=300),
            severity=ErrorSeverity.HIGH,
            channels=[NotificationTarget(ChannelType.EMAIL, "team@example.com")],
            suppression_rules=[SuppressionRule("posting maintenance window", duration=3600)]
        )
        engine = ErrorHandlingEngine(alert_engine=AlertEngine(channels=[email], rules=[rule]), base_delay=0)

        await engine.handle_error(Exception("network unreachable"),
                                  {"component": "posting", "operation": "submit_post"})
        other = await engine.handle_error(Exception("network unreachable"),
                                          {"component": "verification", "operation": "check_link"})

        team_alerts = [sent for sent in email.sent if sent[0] == "team@example.com"]
        assert team_alerts == [("team@example.com", other.error_id)]

        await engine.shutdown(cancel_pending=True)


class TestPersistence:

    @pytest.mark.asyncio
    async def test_store_failure_spools_and_drains(self, tmp_path):
        store = FlakyStore()
        engine = ErrorHandlingEngine(
            store=store,
            alert_engine=AlertEngine(rules=[]),
            fallback_queue=FallbackQueue(tmp_path),
            base_delay=0
        )

        context = await engine.handle_error(Exception("network unreachable"),
                                            {"component": "posting", "operation": "submit_post"})
        await engine.shutdown(cancel_pending=True)

        assert (tmp_path / f"error_{context.error_id}.json").exists()

        store.failing = False
        await engine.run_monitoring_cycle()

        assert context.error_id in store.records
        assert len(engine.fallback_queue) == 0

    @pytest.mark.asyncio
    async def test_driver_error_is_spooled_and_recovery_continues(self, tmp_path):
        store = PostgreSQLErrorLogStore("postgresql://localhost/automation", create_schema=False)
        store.pool = failing_pool(asyncpg.InterfaceError("pool is closing"))
        engine = ErrorHandlingEngine(
            store=store,
            alert_engine=AlertEngine(rules=[]),
            fallback_queue=FallbackQueue(tmp_path),
            base_delay=0
        )

        context = await engine.handle_error(ValueError("boom"),
                                            {"component": "posting", "operation": "submit_post"})

        assert context.pattern_key in engine.error_patterns
        assert engine.get_engine_stats()["pending_recoveries"] == 1
        assert (tmp_path / f"error_{context.error_id}.json").exists()
        await engine.shutdown(cancel_pending=True)

    @pytest.mark.asyncio
    async def test_unexpected_store_error_does_not_raise(self):
        engine = ErrorHandlingEngine(store=ClosingPoolStore(), alert_engine=AlertEngine(rules=[]), base_delay=0)

        assert await engine.persist_error(make_context()) is False

    @pytest.mark.asyncio
    async def test_store_failure_without_queue_does_not_raise(self):
        engine = ErrorHandlingEngine(store=FlakyStore(), alert_engine=AlertEngine(rules=[]), base_delay=0)

        assert await engine.persist_error(make_context()) is False

    @pytest.mark.asyncio
    async def test_mark_error_resolved(self, engine):
        context = await engine.handle_error(Exception("odd"), {"component": "posting", "operation": "x"})
        await engine.shutdown(cancel_pending=True)

        assert await engine.mark_error_resolved(context.error_id) is True
        assert context.resolved is True
        assert context.state == ErrorState.RESOLVED

        recent = await engine.get_recent_errors(limit=5)
        assert recent[0]["id"] == context.error_id


class TestPatterns:

    def test_new_pattern_then_increasing(self, engine):
        first = make_context()
        engine.error_log.append(first)
        engine.update_error_patterns(first)

        pattern = engine.error_patterns[first.pattern_key]
        assert pattern.frequency == 1
        assert pattern.trend == Trend.STABLE

        second = make_context(severity=ErrorSeverity.CRITICAL)
        engine.error_log.append(second)
        engine.update_error_patterns(second)

        assert pattern.frequency == 2
        assert pattern.impact == ErrorSeverity.CRITICAL
        assert pattern.trend == Trend.INCREASING

    def test_decreasing_when_recent_share_is_small(self, engine):
        context = make_context()
        engine.update_error_patterns(context)
        engine.error_patterns[context.pattern_key].frequency = 20

        engine.update_error_patterns(context)

        assert engine.error_patterns[context.pattern_key].trend == Trend.DECREASING


class TestMonitoring:

    @pytest.mark.asyncio
    async def test_cycle_prunes_old_errors(self, engine):
        engine.error_log = [
            make_context(age=timedelta(days=8)),
            make_context(age=timedelta(days=6)),
            make_context(),
        ]

        await engine.run_monitoring_cycle()

        cutoff = utcnow() - timedelta(days=7)
        assert len(engine.error_log) == 2
        assert all(e.timestamp >= cutoff for e in engine.error_log)

    def test_analyze_error_trends(self, engine):
        engine.error_log = (
            [make_context(component="posting") for _ in range(6)]
            + [make_context(component="verification") for _ in range(5)]
            + [make_context(component="link_discovery", age=timedelta(hours=2)) for _ in range(9)]
        )

        assert engine.analyze_error_trends() == {"posting": 6}

    @pytest.mark.asyncio
    async def test_health_checks_are_recorded(self, engine):
        engine.register_health_checker(ContentGenerationHealthChecker(AsyncMock(return_value={"success_rate": 10.0})))

        results = await engine.run_health_checks()

        assert results["content_generation"].status == HealthStatus.DEGRADED
        assert engine.get_health_status()["content_generation"].status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self, engine):
        await engine.start()
        assert engine._monitoring_task is not None

        await engine.shutdown()
        assert engine._monitoring_task is None


class TestStatistics:

    def test_average_resolution_time(self, engine):
        durations = [600, 1800, 1200, 1200, 1000, 1400]
        contexts = [make_context() for _ in range(10)]
        for context, duration in zip(contexts, durations):
            context.resolved = True
            context.resolution = ErrorResolution(
                strategy=RecoveryStrategy.RETRY,
                actions=[],
                duration=duration,
                success=True,
                final_state=SystemState()
            )
        engine.error_log = contexts

        now = utcnow()
        stats = engine.get_error_statistics(now - timedelta(hours=1), now + timedelta(minutes=1))

        assert stats.total_errors == 10
        assert stats.resolved_errors == 6
        assert stats.average_resolution_time == 1200
        assert stats.errors_by_component == {"posting": 10}
        assert stats.errors_by_severity == {"high": 10}
        assert stats.to_dict()["trend_analysis"]["direction"] == "stable"

    def test_time_range_filter(self, engine):
        engine.error_log = [make_context(age=timedelta(days=2)), make_context()]
        now = utcnow()

        stats = engine.get_error_statistics(now - timedelta(days=1), now + timedelta(minutes=1))

        assert stats.total_errors == 1
        assert stats.average_resolution_time == 0


class TestProtection:

    @pytest.mark.asyncio
    async def test_protect_uses_breaker(self, engine):
        engine.breaker_failure_threshold = 1
        failing = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(RuntimeError):
            await engine.protect("publisher_api", failing)
        with pytest.raises(CircuitOpenError):
            await engine.protect("publisher_api", failing)

        assert failing.await_count == 1

    @pytest.mark.asyncio
    async def test_protect_uses_registered_limiter(self, engine):
        engine.get_rate_limiter("search_api", max_requests=1, window_seconds=60)
        operation = AsyncMock(return_value="results")

        assert await engine.protect("search_api", operation) == "results"
        with pytest.raises(RateLimitExceededError):
            await engine.protect("search_api", operation)

        assert engine.get_circuit_breaker("search_api").state == CircuitState.CLOSED
        assert engine.get_engine_stats()["rate_limiters"]["search_api"]["total_rejected"] == 1


class TestFromSettings:

    def test_builds_wired_engine(self, tmp_path):
        settings = Settings()
        settings.persistence.fallback_dir = str(tmp_path / "spool")
        settings.engine.base_delay = 0.5

        engine = ErrorHandlingEngine.from_settings(settings)

        assert isinstance(engine.store, MemoryErrorLogStore)
        assert engine.base_delay == 0.5
        assert engine.fallback_queue.directory == tmp_path / "spool"
        assert set(engine.health_checkers) == {
            "database", "api", "queue", "content_generation", "link_discovery"
        }
        assert {r.id for r in engine.alert_engine.get_rules()} == {"high_error_rate", "critical_errors"}
        assert set(engine.handlers) == set(RecoveryStrategy)
