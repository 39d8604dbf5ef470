"""
Recovery Commands
================

Recovery strategies that act on systems outside the engine (failover,
scaling, rollback, ...) publish an explicit ``RecoveryCommand`` instead of
performing the action themselves. Operators or automation register executors
on the ``CommandBus``; a command counts as carried out only when an executor
accepts it.
"""

import asyncio
import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import ErrorContext, RecoveryStrategy, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RecoveryCommand:
    """Instruction for a downstream executor."""
    strategy: RecoveryStrategy
    action: str
    error_id: str
    component: str
    operation: str
    target_status: str
    campaign_id: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)
    command_id: str = field(default_factory=lambda: f"cmd_{uuid.uuid4().hex[:12]}")
    issued_at: datetime = field(default_factory=utcnow)

    @classmethod
    def for_error(cls, error_context: ErrorContext, strategy: RecoveryStrategy,
                  action: str, target_status: str, **parameters) -> "RecoveryCommand":
        return cls(
            strategy=strategy,
            action=action,
            error_id=error_context.error_id,
            component=error_context.component,
            operation=error_context.operation,
            target_status=target_status,
            campaign_id=error_context.campaign_id,
            parameters={
                "category": error_context.category.value,
                "severity": error_context.severity.value,
                "recovery_attempts": error_context.recovery_attempts,
                **parameters
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "command_id": self.command_id,
            "strategy": self.strategy.value,
            "action": self.action,
            "error_id": self.error_id,
            "component": self.component,
            "operation": self.operation,
            "campaign_id": self.campaign_id,
            "target_status": self.target_status,
            "parameters": self.parameters,
            "issued_at": self.issued_at.isoformat()
        }


CommandExecutor = Callable[[RecoveryCommand], Awaitable[bool]]


class CommandBus:
    """Fan-out of recovery commands to registered executors."""

    def __init__(self, executor_timeout: float = 10.0, history_size: int = 500):
        self.executor_timeout = executor_timeout
        self.executors: List[CommandExecutor] = []
        self.history: deque = deque(maxlen=history_size)

    def subscribe(self, executor: CommandExecutor):
        """Register an executor."""
        self.executors.append(executor)

    def unsubscribe(self, executor: CommandExecutor):
        """Remove an executor."""
        if executor in self.executors:
            self.executors.remove(executor)

    async def publish(self, command: RecoveryCommand) -> bool:
        """
        Publish a command to every executor.

        Returns:
            True if at least one executor accepted the command
        """
        accepted = False

        for executor in list(self.executors):
            try:
                if await asyncio.wait_for(executor(command), timeout=self.executor_timeout):
                    accepted = True
            except asyncio.TimeoutError:
                logger.error(f"Executor timed out on command {command.command_id} ({command.action})")
            except Exception as e:
                logger.error(f"Executor failed on command {command.command_id} ({command.action}): {e}")

        self.history.append({"command": command.to_dict(), "accepted": accepted})

        if not self.executors:
            logger.warning(f"No executor subscribed for recovery command {command.action} ({command.error_id})")

        return accepted

    def get_history(self, error_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get published commands, optionally for one error."""
        return [entry for entry in self.history
                if error_id is None or entry["command"]["error_id"] == error_id]
