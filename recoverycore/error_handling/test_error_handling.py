"""
Unit Tests for Error Handling Module
===================================

Covers:
- Severity and category classification
- Circuit breaker state machine
- Sliding-window rate limiter
- Recovery handlers and the command bus
- Statistics helpers
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from recoverycore.error_handling.circuit_breaker import CircuitBreaker, CircuitState
from recoverycore.error_handling.classifier import categorize_error, classify_error_severity
from recoverycore.error_handling.commands import CommandBus, RecoveryCommand
from recoverycore.error_handling.exceptions import (
    CircuitOpenError, RateLimitExceededError, ReportedError
)
from recoverycore.error_handling.models import (
    ErrorCategory, ErrorContext, ErrorDetails, ErrorSeverity, ErrorState, RecoveryStrategy,
    Trend, generate_error_id, get_max_recovery_attempts
)
from recoverycore.error_handling.rate_limiter import RateLimiter
from recoverycore.error_handling.recovery_handlers import (
    CircuitBreakerHandler, FallbackHandler, IRecoveryHandler, RateLimitBackoffHandler,
    RetryHandler, create_default_handlers
)
from recoverycore.error_handling.statistics import group_by, peak_hours, trend_direction


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_context(category=ErrorCategory.NETWORK, severity=ErrorSeverity.HIGH,
                 attempts=0, retry_operation=None, component="content_generation") -> ErrorContext:
    return ErrorContext(
        error_id=generate_error_id(),
        component=component,
        operation="generate_article",
        severity=severity,
        category=category,
        error=ErrorDetails(message="Network timeout while calling API"),
        recovery_attempts=attempts,
        max_recovery_attempts=get_max_recovery_attempts(severity),
        retry_operation=retry_operation
    )


class TestClassifier:
    """Test severity and category classification."""

    def test_network_timeout_scenario(self):
        error = Exception("Network timeout while calling API")
        context = {"component": "content_generation"}

        assert classify_error_severity(error) == ErrorSeverity.HIGH
        assert categorize_error(error, context) == ErrorCategory.NETWORK

    @pytest.mark.parametrize("message,expected", [
        ("Fatal error in worker", ErrorSeverity.CRITICAL),
        ("database connection refused", ErrorSeverity.CRITICAL),
        ("auth token expired", ErrorSeverity.HIGH),
        ("Validation failed for field url", ErrorSeverity.MEDIUM),
        ("Rate limit hit", ErrorSeverity.MEDIUM),
        ("something odd happened", ErrorSeverity.LOW),
        ("", ErrorSeverity.LOW),
    ])
    def test_severity_keywords(self, message, expected):
        assert classify_error_severity(Exception(message)) == expected

    def test_severity_from_mapping(self):
        assert classify_error_severity({"message": "CRITICAL failure"}) == ErrorSeverity.CRITICAL
        assert classify_error_severity({}) == ErrorSeverity.LOW

    def test_category_from_code(self):
        error = ReportedError("upstream said no", code="RATE_LIMITED")
        assert categorize_error(error) == ErrorCategory.RATE_LIMIT

        assert categorize_error({"message": "boom", "code": "DB_LOCKED"}) == ErrorCategory.DATABASE

    def test_category_priority_order(self):
        # "auth" is checked before "rate"
        assert categorize_error(Exception("auth rate exceeded")) == ErrorCategory.AUTHENTICATION

    def test_component_fallback(self):
        error = Exception("unexpected response")
        assert categorize_error(error, {"component": "link_discovery"}) == ErrorCategory.LINK_DISCOVERY
        assert categorize_error(error, {"component": "posting"}) == ErrorCategory.POSTING
        assert categorize_error(error, {"component": "payment"}) == ErrorCategory.INFRASTRUCTURE
        assert categorize_error(error) == ErrorCategory.INFRASTRUCTURE

    def test_declared_category_wins(self):
        error = ReportedError("network unreachable", category=ErrorCategory.EXTERNAL_API)
        assert categorize_error(error, {"component": "posting"}) == ErrorCategory.EXTERNAL_API

        error = ReportedError("network unreachable", category="resource_exhaustion")
        assert categorize_error(error) == ErrorCategory.RESOURCE_EXHAUSTION

    def test_unknown_declared_category_falls_back_to_keywords(self):
        error = ReportedError("network unreachable", category="not_a_category")
        assert categorize_error(error) == ErrorCategory.NETWORK

    def test_classification_is_deterministic(self):
        error = Exception("Database timeout")
        assert classify_error_severity(error) == classify_error_severity(error)
        assert categorize_error(error) == categorize_error(error)


class TestModels:
    """Test data model helpers."""

    def test_max_recovery_attempts_monotonic(self):
        order = [ErrorSeverity.LOW, ErrorSeverity.MEDIUM, ErrorSeverity.HIGH,
                 ErrorSeverity.CRITICAL, ErrorSeverity.CATASTROPHIC]
        caps = [get_max_recovery_attempts(s) for s in order]

        assert caps == [3, 5, 8, 10, 15]
        assert caps == sorted(caps)

    def test_error_id_format(self):
        error_id = generate_error_id()
        prefix, millis, suffix = error_id.split("_")

        assert prefix == "error"
        assert millis.isdigit()
        assert len(suffix) == 9

    def test_record_shape(self):
        context = make_context()
        record = context.to_record()

        assert record["id"] == context.error_id
        assert record["severity"] == "high"
        assert record["category"] == "network"
        assert record["error_details"]["message"] == "Network timeout while calling API"
        assert record["error_details"]["code"] == "UNKNOWN_ERROR"
        assert record["resolved"] is False
        assert record["resolution"] is None

    def test_pattern_key(self):
        context = make_context()
        assert context.pattern_key == "content_generation_network_UNKNOWN_ERROR"


class TestCircuitBreaker:
    """Test circuit breaker transitions."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_rejects_without_invoking(self):
        clock = FakeClock()
        breaker = CircuitBreaker("api", failure_threshold=3, reset_timeout=30.0, clock=clock)
        calls = {"count": 0}

        async def failing():
            calls["count"] += 1
            raise ValueError("upstream down")

        for _ in range(3):
            with pytest.raises(ValueError):
                await breaker.execute(failing)

        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError, match="Circuit breaker is open"):
            await breaker.execute(failing)

        assert calls["count"] == 3
        assert breaker.total_rejections == 1

    @pytest.mark.asyncio
    async def test_half_open_trial_success_closes(self):
        clock = FakeClock()
        breaker = CircuitBreaker("api", failure_threshold=1, reset_timeout=30.0, clock=clock)

        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))
        assert breaker.state == CircuitState.OPEN

        clock.now = 30.0
        result = await breaker.execute(AsyncMock(return_value="ok"))

        assert result == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self):
        clock = FakeClock()
        breaker = CircuitBreaker("api", failure_threshold=2, reset_timeout=10.0, clock=clock)
        failing = AsyncMock(side_effect=RuntimeError("boom"))

        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.execute(failing)

        clock.now = 15.0
        with pytest.raises(RuntimeError):
            await breaker.execute(failing)

        assert breaker.state == CircuitState.OPEN
        assert failing.await_count == 3

        clock.now = 20.0
        with pytest.raises(CircuitOpenError):
            await breaker.execute(failing)
        assert failing.await_count == 3

    @pytest.mark.asyncio
    async def test_half_open_allows_single_trial(self):
        clock = FakeClock()
        breaker = CircuitBreaker("api", failure_threshold=1, reset_timeout=5.0, clock=clock)

        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))

        clock.now = 5.0
        release = asyncio.Event()

        async def slow_trial():
            await release.wait()
            return "recovered"

        trial = asyncio.create_task(breaker.execute(slow_trial))
        await asyncio.sleep(0)
        assert breaker.state == CircuitState.HALF_OPEN

        second = AsyncMock(return_value="second")
        with pytest.raises(CircuitOpenError):
            await breaker.execute(second)
        second.assert_not_awaited()

        release.set()
        assert await trial == "recovered"
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self):
        breaker = CircuitBreaker("api", failure_threshold=3, clock=FakeClock())

        with pytest.raises(RuntimeError):
            await breaker.execute(AsyncMock(side_effect=RuntimeError("boom")))
        await breaker.execute(AsyncMock(return_value=1))

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_sync_callable(self):
        breaker = CircuitBreaker("api")
        assert await breaker.execute(lambda x: x * 2, 21) == 42

    def test_trip_and_stats(self):
        breaker = CircuitBreaker("api", clock=FakeClock(100.0))
        breaker.trip()

        stats = breaker.get_stats()
        assert stats["state"] == "open"
        assert stats["last_failure_time"] == 100.0

        breaker.reset()
        assert breaker.state == CircuitState.CLOSED


class TestRateLimiter:
    """Test sliding-window rate limiting."""

    @pytest.mark.asyncio
    async def test_window_scenario(self):
        clock = FakeClock()
        limiter = RateLimiter("search_api", max_requests=2, window_seconds=1.0, clock=clock)
        operation = AsyncMock(return_value="ok")

        await limiter.execute(operation)
        clock.now = 0.5
        await limiter.execute(operation)

        clock.now = 0.6
        with pytest.raises(RateLimitExceededError, match="Rate limit exceeded"):
            await limiter.execute(operation)
        assert operation.await_count == 2

        clock.now = 1.6
        assert await limiter.execute(operation) == "ok"
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_count_resets_after_idle_window(self):
        clock = FakeClock()
        limiter = RateLimiter("search_api", max_requests=5, window_seconds=1.0, clock=clock)

        for _ in range(3):
            await limiter.execute(AsyncMock())
        assert limiter.current_count == 3

        clock.now = 1.0
        assert limiter.current_count == 0

    @pytest.mark.asyncio
    async def test_stats(self):
        limiter = RateLimiter("search_api", max_requests=1, window_seconds=60.0, clock=FakeClock())
        await limiter.execute(AsyncMock())
        with pytest.raises(RateLimitExceededError):
            await limiter.execute(AsyncMock())

        stats = limiter.get_stats()
        assert stats["total_accepted"] == 1
        assert stats["total_rejected"] == 1


class TestCommandBus:
    """Test recovery command fan-out."""

    @pytest.mark.asyncio
    async def test_no_executor_means_not_accepted(self):
        bus = CommandBus()
        command = RecoveryCommand.for_error(make_context(), RecoveryStrategy.FAILOVER,
                                            "failover_to_backup", "failover_active")

        assert await bus.publish(command) is False
        assert bus.get_history()[0]["accepted"] is False

    @pytest.mark.asyncio
    async def test_any_accepting_executor(self):
        bus = CommandBus()
        rejecting = AsyncMock(return_value=False)
        accepting = AsyncMock(return_value=True)
        bus.subscribe(rejecting)
        bus.subscribe(accepting)

        context = make_context()
        command = RecoveryCommand.for_error(context, RecoveryStrategy.ROLLBACK,
                                            "rollback_to_stable_state", "rolled_back")

        assert await bus.publish(command) is True
        rejecting.assert_awaited_once_with(command)
        assert bus.get_history(context.error_id)[0]["command"]["action"] == "rollback_to_stable_state"

    @pytest.mark.asyncio
    async def test_failing_and_hung_executors_are_isolated(self):
        bus = CommandBus(executor_timeout=0.01)

        async def hung(command):
            await asyncio.sleep(1)
            return True

        bus.subscribe(AsyncMock(side_effect=RuntimeError("executor down")))
        bus.subscribe(hung)

        command = RecoveryCommand.for_error(make_context(), RecoveryStrategy.FALLBACK,
                                            "activate_fallback_service", "fallback_mode")
        assert await bus.publish(command) is False

        accepting = AsyncMock(return_value=True)
        bus.subscribe(accepting)
        assert await bus.publish(command) is True

        bus.unsubscribe(accepting)
        assert accepting not in bus.executors


class TestRecoveryHandlers:
    """Test recovery strategy handlers."""

    @pytest.mark.asyncio
    async def test_retry_reinvokes_operation(self):
        operation = AsyncMock(return_value="published")
        context = make_context(attempts=1, retry_operation=operation)
        handler = RetryHandler(CommandBus(), base_delay=0)

        resolution = await handler.recover(context)

        assert resolution.success is True
        assert resolution.strategy == RecoveryStrategy.RETRY
        assert resolution.final_state.campaign_status == "active"
        assert resolution.actions[0].output == "published"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_retry_propagates_operation_failure(self):
        operation = AsyncMock(side_effect=ConnectionResetError("still down"))
        context = make_context(attempts=1, retry_operation=operation)

        resolution = await RetryHandler(CommandBus(), base_delay=0).recover(context)

        assert resolution.success is False
        assert "still down" in resolution.actions[0].output
        assert "Implement fallback mechanism" in resolution.preventive_measures

    @pytest.mark.asyncio
    async def test_retry_operation_timeout(self):
        async def hangs():
            await asyncio.sleep(1)

        context = make_context(attempts=1, retry_operation=hangs)
        resolution = await RetryHandler(CommandBus(), base_delay=0, operation_timeout=0.01).recover(context)

        assert resolution.success is False
        assert "timed out" in resolution.actions[0].output

    @pytest.mark.asyncio
    async def test_retry_without_operation_publishes_command(self):
        bus = CommandBus()
        executor = AsyncMock(return_value=True)
        bus.subscribe(executor)

        resolution = await RetryHandler(bus, base_delay=0).recover(make_context(attempts=1))

        assert resolution.success is True
        command = executor.await_args.args[0]
        assert command.action == "retry_operation"
        assert command.strategy == RecoveryStrategy.RETRY

    @pytest.mark.asyncio
    async def test_rate_limit_backoff(self):
        operation = AsyncMock(return_value=None)
        context = make_context(category=ErrorCategory.RATE_LIMIT, attempts=2, retry_operation=operation)
        handler = RateLimitBackoffHandler(CommandBus(), base_delay=0)

        resolution = await handler.recover(context)

        assert resolution.success is True
        assert resolution.actions[0].action == "backoff_0ms"
        assert resolution.final_state.campaign_status == "rate_limited"
        assert RateLimitBackoffHandler(CommandBus(), base_delay=0.5).backoff_seconds(context) == 2.0

    @pytest.mark.asyncio
    async def test_symbolic_strategy_fails_without_executor(self):
        resolution = await FallbackHandler(CommandBus()).recover(make_context())

        assert resolution.success is False
        assert resolution.final_state.campaign_status == "active"
        assert "No executor accepted activate_fallback_service" in resolution.lessons_learned

    @pytest.mark.asyncio
    async def test_symbolic_strategy_succeeds_when_accepted(self):
        bus = CommandBus()
        bus.subscribe(AsyncMock(return_value=True))

        resolution = await FallbackHandler(bus).recover(make_context())

        assert resolution.success is True
        assert resolution.final_state.campaign_status == "fallback_mode"
        assert resolution.lessons_learned == ["Fallback mechanism worked"]

    @pytest.mark.asyncio
    async def test_circuit_breaker_handler_trips_breaker(self):
        breaker = CircuitBreaker("content_generation")
        bus = CommandBus()
        bus.subscribe(AsyncMock(return_value=True))
        handler = CircuitBreakerHandler(bus, breaker_lookup=lambda name: breaker)

        resolution = await handler.recover(make_context(attempts=4))

        assert breaker.state == CircuitState.OPEN
        assert resolution.success is True
        assert resolution.actions[0].action == "trip_breaker_content_generation"
        assert resolution.final_state.campaign_status == "circuit_open"

    @pytest.mark.asyncio
    async def test_handler_never_raises(self):
        class BrokenHandler(IRecoveryHandler):
            strategy = RecoveryStrategy.ROLLBACK

            async def _attempt(self, error_context):
                raise KeyError("missing snapshot")

        resolution = await BrokenHandler().recover(make_context())

        assert resolution.success is False
        assert resolution.actions[0].action == "rollback_failed"

    @pytest.mark.asyncio
    async def test_state_provider_failure_is_tolerated(self):
        provider = AsyncMock(side_effect=RuntimeError("psutil unavailable"))
        handler = RetryHandler(CommandBus(), base_delay=0, state_provider=provider)

        resolution = await handler.recover(make_context(retry_operation=AsyncMock()))

        assert resolution.success is True
        assert resolution.final_state.campaign_status == "active"

    def test_default_handlers_cover_every_strategy(self):
        handlers = create_default_handlers(CommandBus())
        assert set(handlers) == set(RecoveryStrategy)


class TestStatisticsHelpers:
    """Test statistics helpers."""

    def test_trend_direction(self):
        assert trend_direction({}) == Trend.STABLE
        assert trend_direction({3: 4}) == Trend.STABLE
        assert trend_direction({1: 2, 2: 2, 3: 6, 4: 6}) == Trend.INCREASING
        assert trend_direction({1: 10, 2: 2}) == Trend.DECREASING
        assert trend_direction({1: 5, 2: 5}) == Trend.STABLE

    def test_peak_hours(self):
        assert peak_hours({}) == []
        assert peak_hours({9: 1, 10: 1, 11: 10}) == [11]

    def test_group_by_uses_enum_values(self):
        contexts = [make_context(), make_context(severity=ErrorSeverity.LOW), make_context()]
        assert group_by(contexts, "severity") == {"high": 2, "low": 1}
        assert group_by(contexts, "component") == {"content_generation": 3}

    def test_context_defaults(self):
        context = make_context()
        assert context.state == ErrorState.REPORTED
        assert context.timestamp.tzinfo == timezone.utc
        assert isinstance(context.timestamp, datetime)
