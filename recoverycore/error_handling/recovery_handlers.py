"""
Recovery Strategy Handlers
=========================

Interchangeable strategies sharing one contract: ``recover(error_context)``
returns an ``ErrorResolution`` and never raises.

Handlers that can act by themselves (retry, rate limit backoff) re-invoke the
original fallible operation captured on the error context. Handlers whose
action belongs to an operator or automation layer publish a
``RecoveryCommand`` and succeed only if an executor accepts it.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from .circuit_breaker import CircuitBreaker
from .commands import CommandBus, RecoveryCommand
from .models import (
    ErrorContext, ErrorResolution, RecoveryAction, RecoveryStrategy, SystemState
)

logger = logging.getLogger(__name__)

StateProvider = Callable[[], Awaitable[SystemState]]


def _elapsed_ms(start: float) -> float:
    return (time.monotonic() - start) * 1000


@dataclass
class RecoveryOutcome:
    """What a handler did, before it is wrapped into a resolution."""
    success: bool
    final_status: str
    actions: List[RecoveryAction] = field(default_factory=list)
    lessons_learned: List[str] = field(default_factory=list)
    preventive_measures: List[str] = field(default_factory=list)


class IRecoveryHandler(ABC):
    """Interface for recovery handlers."""

    strategy: RecoveryStrategy

    def __init__(self, state_provider: Optional[StateProvider] = None):
        self.state_provider = state_provider

    async def recover(self, error_context: ErrorContext) -> ErrorResolution:
        """Attempt recovery. Failure is reported through ``success=False``."""
        start = time.monotonic()

        try:
            outcome = await self._attempt(error_context)
        except Exception as e:
            logger.error(f"{self.strategy.value} handler crashed for {error_context.error_id}: {e}")
            outcome = RecoveryOutcome(
                success=False,
                final_status="active",
                actions=[RecoveryAction(
                    action=f"{self.strategy.value}_failed",
                    success=False,
                    duration=_elapsed_ms(start),
                    output=str(e)
                )],
                lessons_learned=[f"{self.strategy.value} handler raised {type(e).__name__}"],
                preventive_measures=["Inspect recovery handler logs"]
            )

        return ErrorResolution(
            strategy=self.strategy,
            actions=outcome.actions,
            duration=_elapsed_ms(start),
            success=outcome.success,
            final_state=await self._final_state(outcome.final_status),
            lessons_learned=outcome.lessons_learned,
            preventive_measures=outcome.preventive_measures
        )

    @abstractmethod
    async def _attempt(self, error_context: ErrorContext) -> RecoveryOutcome:
        """Perform the strategy."""
        pass

    async def _final_state(self, status: str) -> SystemState:
        state = SystemState()
        if self.state_provider:
            try:
                state = await self.state_provider()
            except Exception as e:
                logger.warning(f"Could not capture system state after recovery: {e}")
        state.campaign_status = status
        return state


class CommandRecoveryHandler(IRecoveryHandler):
    """Handler whose action is carried out by a downstream executor."""

    action: str = ""
    final_status: str = "active"
    lessons_learned: List[str] = []
    preventive_measures: List[str] = []

    def __init__(self, command_bus: CommandBus, state_provider: Optional[StateProvider] = None):
        super().__init__(state_provider)
        self.command_bus = command_bus

    def build_command(self, error_context: ErrorContext) -> RecoveryCommand:
        return RecoveryCommand.for_error(error_context, self.strategy, self.action, self.final_status)

    async def _attempt(self, error_context: ErrorContext) -> RecoveryOutcome:
        return await _publish(self.command_bus, self.build_command(error_context),
                              self.lessons_learned, self.preventive_measures)


async def _publish(command_bus: CommandBus, command: RecoveryCommand,
                   lessons: List[str], measures: List[str]) -> RecoveryOutcome:
    start = time.monotonic()
    accepted = await command_bus.publish(command)

    action = RecoveryAction(
        action=command.action,
        success=accepted,
        duration=_elapsed_ms(start),
        output=command.command_id
    )

    if accepted:
        return RecoveryOutcome(True, command.target_status, [action], list(lessons), list(measures))

    return RecoveryOutcome(
        success=False,
        final_status="active",
        actions=[action],
        lessons_learned=[f"No executor accepted {command.action}"],
        preventive_measures=["Register a recovery command executor"]
    )


async def _reinvoke(error_context: ErrorContext, action_name: str,
                    timeout: float) -> RecoveryAction:
    start = time.monotonic()
    try:
        output = await asyncio.wait_for(error_context.retry_operation(), timeout=timeout)
        return RecoveryAction(action=action_name, success=True,
                              duration=_elapsed_ms(start), output=output)
    except asyncio.TimeoutError:
        return RecoveryAction(action=action_name, success=False,
                              duration=_elapsed_ms(start), output=f"timed out after {timeout}s")
    except Exception as e:
        return RecoveryAction(action=action_name, success=False,
                              duration=_elapsed_ms(start), output=str(e))


class RetryHandler(IRecoveryHandler):
    """Waits ``base_delay * attempts`` then re-runs the original operation."""

    strategy = RecoveryStrategy.RETRY

    def __init__(self, command_bus: CommandBus, base_delay: float = 1.0,
                 operation_timeout: float = 30.0, state_provider: Optional[StateProvider] = None):
        super().__init__(state_provider)
        self.command_bus = command_bus
        self.base_delay = base_delay
        self.operation_timeout = operation_timeout

    async def _attempt(self, error_context: ErrorContext) -> RecoveryOutcome:
        delay = self.base_delay * error_context.recovery_attempts
        await asyncio.sleep(delay)

        if error_context.retry_operation is None:
            command = RecoveryCommand.for_error(
                error_context, self.strategy, "retry_operation", "active", delay_seconds=delay
            )
            return await _publish(self.command_bus, command,
                                  ["Retry delegated to executor"],
                                  ["Consider implementing circuit breaker"])

        action = await _reinvoke(error_context, "retry_after_delay", self.operation_timeout)

        if action.success:
            logger.info(f"Retry recovery successful for error: {error_context.error_id}")
            return RecoveryOutcome(True, "active", [action],
                                   ["Retry was successful"],
                                   ["Consider implementing circuit breaker"])

        logger.warning(f"Retry recovery failed for error: {error_context.error_id}: {action.output}")
        return RecoveryOutcome(False, "active", [action],
                               ["Retry failed, need different strategy"],
                               ["Implement fallback mechanism"])


class RateLimitBackoffHandler(IRecoveryHandler):
    """Waits ``2 ** attempts * base_delay`` before resuming."""

    strategy = RecoveryStrategy.RATE_LIMIT_BACKOFF

    def __init__(self, command_bus: CommandBus, base_delay: float = 1.0,
                 operation_timeout: float = 30.0, state_provider: Optional[StateProvider] = None):
        super().__init__(state_provider)
        self.command_bus = command_bus
        self.base_delay = base_delay
        self.operation_timeout = operation_timeout

    def backoff_seconds(self, error_context: ErrorContext) -> float:
        return (2 ** error_context.recovery_attempts) * self.base_delay

    async def _attempt(self, error_context: ErrorContext) -> RecoveryOutcome:
        backoff = self.backoff_seconds(error_context)
        start = time.monotonic()
        await asyncio.sleep(backoff)

        actions = [RecoveryAction(
            action=f"backoff_{int(backoff * 1000)}ms",
            success=True,
            duration=_elapsed_ms(start)
        )]

        if error_context.retry_operation is None:
            command = RecoveryCommand.for_error(
                error_context, self.strategy, "resume_after_backoff", "rate_limited",
                backoff_seconds=backoff
            )
            outcome = await _publish(self.command_bus, command,
                                     ["Rate limit respected"],
                                     ["Implement better rate limiting"])
            outcome.actions = actions + outcome.actions
            return outcome

        action = await _reinvoke(error_context, "resume_after_backoff", self.operation_timeout)
        actions.append(action)

        if action.success:
            return RecoveryOutcome(True, "rate_limited", actions,
                                   ["Rate limit respected"],
                                   ["Implement better rate limiting"])

        return RecoveryOutcome(False, "rate_limited", actions,
                               ["Backoff was not long enough"],
                               ["Lower request rate for this resource"])


class FallbackHandler(CommandRecoveryHandler):
    strategy = RecoveryStrategy.FALLBACK
    action = "activate_fallback_service"
    final_status = "fallback_mode"
    lessons_learned = ["Fallback mechanism worked"]
    preventive_measures = ["Improve primary service reliability"]


class CircuitBreakerHandler(CommandRecoveryHandler):
    """Opens the component's breaker and tells executors to stop traffic."""

    strategy = RecoveryStrategy.CIRCUIT_BREAKER
    action = "open_circuit_breaker"
    final_status = "circuit_open"
    lessons_learned = ["Circuit breaker prevented cascade failure"]
    preventive_measures = ["Monitor for service recovery"]

    def __init__(self, command_bus: CommandBus,
                 breaker_lookup: Optional[Callable[[str], CircuitBreaker]] = None,
                 state_provider: Optional[StateProvider] = None):
        super().__init__(command_bus, state_provider)
        self.breaker_lookup = breaker_lookup

    async def _attempt(self, error_context: ErrorContext) -> RecoveryOutcome:
        actions: List[RecoveryAction] = []

        if self.breaker_lookup:
            start = time.monotonic()
            self.breaker_lookup(error_context.component).trip()
            actions.append(RecoveryAction(
                action=f"trip_breaker_{error_context.component}",
                success=True,
                duration=_elapsed_ms(start)
            ))

        outcome = await super()._attempt(error_context)
        outcome.actions = actions + outcome.actions
        return outcome


class ResourceScalingHandler(CommandRecoveryHandler):
    strategy = RecoveryStrategy.RESOURCE_SCALING
    action = "scale_up_resources"
    final_status = "scaled_up"
    lessons_learned = ["Resource scaling resolved issue"]
    preventive_measures = ["Implement auto-scaling"]


class GracefulDegradationHandler(CommandRecoveryHandler):
    strategy = RecoveryStrategy.GRACEFUL_DEGRADATION
    action = "enable_degraded_mode"
    final_status = "degraded"
    lessons_learned = ["Graceful degradation maintained service"]
    preventive_measures = ["Improve service robustness"]


class FailoverHandler(CommandRecoveryHandler):
    strategy = RecoveryStrategy.FAILOVER
    action = "failover_to_backup"
    final_status = "failover_active"
    lessons_learned = ["Failover successful"]
    preventive_measures = ["Repair primary system"]


class RollbackHandler(CommandRecoveryHandler):
    strategy = RecoveryStrategy.ROLLBACK
    action = "rollback_to_stable_state"
    final_status = "rolled_back"
    lessons_learned = ["Rollback restored stability"]
    preventive_measures = ["Test changes more thoroughly"]


def create_default_handlers(command_bus: CommandBus,
                            breaker_lookup: Optional[Callable[[str], CircuitBreaker]] = None,
                            base_delay: float = 1.0,
                            operation_timeout: float = 30.0,
                            state_provider: Optional[StateProvider] = None
                            ) -> Dict[RecoveryStrategy, IRecoveryHandler]:
    """Build the standard handler set keyed by strategy."""
    handlers: List[IRecoveryHandler] = [
        RetryHandler(command_bus, base_delay, operation_timeout, state_provider),
        FallbackHandler(command_bus, state_provider),
        CircuitBreakerHandler(command_bus, breaker_lookup, state_provider),
        RateLimitBackoffHandler(command_bus, base_delay, operation_timeout, state_provider),
        ResourceScalingHandler(command_bus, state_provider),
        GracefulDegradationHandler(command_bus, state_provider),
        FailoverHandler(command_bus, state_provider),
        RollbackHandler(command_bus, state_provider),
    ]
    return {handler.strategy: handler for handler in handlers}
