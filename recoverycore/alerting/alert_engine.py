"""
Alert Engine
===========

Evaluates alert rules against the recent error log and dispatches
notifications through channel adapters.

Features:
- Count, substring and regular expression conditions
- Per-metric error matching
- Component suppression rules
- Per-channel failure isolation with send timeouts
- Escalation alerts that bypass rule evaluation
"""

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from ..error_handling.exceptions import NotificationError
from ..error_handling.models import ErrorCategory, ErrorContext, ErrorSeverity, utcnow
from .channels import INotificationChannel, PushChannel, format_alert_message
from .rules import (
    AlertCondition, AlertPriority, AlertRule, ChannelType, ConditionOperator,
    NotificationTarget
)

logger = logging.getLogger(__name__)


@dataclass
class SentAlert:
    """One delivery attempt of an alert to one target."""
    rule_id: str
    error_id: str
    channel: ChannelType
    target: str
    delivered: bool
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "error_id": self.error_id,
            "channel": self.channel.value,
            "target": self.target,
            "delivered": self.delivered,
            "error": self.error,
            "timestamp": self.timestamp.isoformat()
        }


def error_matches_metric(error_context: ErrorContext, metric: str) -> bool:
    """Check whether an error counts toward a metric."""
    if metric == "error_count":
        return True
    if metric == "critical_errors":
        return error_context.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.CATASTROPHIC)
    if metric == "database_errors":
        return error_context.category == ErrorCategory.DATABASE
    if metric == "network_errors":
        return error_context.category == ErrorCategory.NETWORK
    return False


def evaluate_condition(condition: AlertCondition, error_context: ErrorContext,
                       error_log: Iterable[ErrorContext], now: Optional[datetime] = None) -> bool:
    """Evaluate a rule condition for the current error."""
    now = now or utcnow()
    window_start = now - timedelta(seconds=condition.time_window)

    if condition.operator == ConditionOperator.CONTAINS:
        return str(condition.threshold) in error_context.error.message

    if condition.operator == ConditionOperator.PATTERN:
        try:
            return re.search(str(condition.threshold), error_context.error.message) is not None
        except re.error as e:
            logger.error(f"Invalid alert pattern {condition.threshold!r}: {e}")
            return False

    count = sum(
        1 for entry in error_log
        if entry.timestamp > window_start and error_matches_metric(entry, condition.metric)
    )

    try:
        threshold = float(condition.threshold)
    except (TypeError, ValueError):
        logger.error(f"Non-numeric threshold {condition.threshold!r} for {condition.operator.value}")
        return False

    if condition.operator == ConditionOperator.GT:
        return count > threshold
    elif condition.operator == ConditionOperator.LT:
        return count < threshold
    elif condition.operator == ConditionOperator.EQ:
        return count == threshold

    return False


def is_suppressed(rule: AlertRule, error_context: ErrorContext) -> bool:
    return any(s.matches(error_context.component) for s in rule.suppression_rules)


class AlertEngine:
    """Rule evaluation and notification dispatch."""

    def __init__(self,
                 channels: Optional[List[INotificationChannel]] = None,
                 rules: Optional[List[AlertRule]] = None,
                 escalation_target: Optional[NotificationTarget] = None,
                 notification_timeout: float = 10.0,
                 history_size: int = 1000):
        self.channels: Dict[ChannelType, INotificationChannel] = {}
        for channel in channels or [PushChannel()]:
            self.register_channel(channel)

        self.rules: Dict[str, AlertRule] = {}
        for rule in rules or []:
            self.add_rule(rule)

        self.escalation_target = escalation_target or NotificationTarget(
            ChannelType.EMAIL, "ops@company.com", AlertPriority.URGENT
        )
        self.notification_timeout = notification_timeout
        self.alerts_sent: deque = deque(maxlen=history_size)

    def register_channel(self, channel: INotificationChannel):
        self.channels[channel.channel_type] = channel

    def add_rule(self, rule: AlertRule):
        """Add or replace an alert rule."""
        self.rules[rule.id] = rule
        logger.info(f"Added alert rule: {rule.name}")

    def remove_rule(self, rule_id: str):
        if rule_id in self.rules:
            del self.rules[rule_id]
            logger.info(f"Removed alert rule: {rule_id}")

    def get_rules(self) -> List[AlertRule]:
        return list(self.rules.values())

    async def check_alert_conditions(self, error_context: ErrorContext,
                                     error_log: Iterable[ErrorContext]) -> List[str]:
        """
        Evaluate every enabled rule for a newly recorded error.

        Returns:
            Ids of the rules that fired
        """
        error_log = list(error_log)
        fired = []

        for rule in list(self.rules.values()):
            if not rule.enabled:
                continue

            if not evaluate_condition(rule.condition, error_context, error_log):
                continue

            if is_suppressed(rule, error_context):
                logger.info(f"Alert {rule.id} suppressed for component {error_context.component}")
                continue

            await self.send_alert(rule, error_context)
            fired.append(rule.id)

        return fired

    async def send_alert(self, rule: AlertRule, error_context: ErrorContext) -> int:
        """
        Dispatch a rule's notification to all of its channels.

        Returns:
            Number of targets that accepted the notification
        """
        message = format_alert_message(rule, error_context)
        delivered = 0

        for target in rule.channels:
            record = SentAlert(rule.id, error_context.error_id, target.type, target.target, False)

            channel = self.channels.get(target.type)
            if channel is None:
                record.error = f"No {target.type.value} channel registered"
                logger.error(f"Alert {rule.id}: {record.error}")
                self.alerts_sent.append(record)
                continue

            try:
                await asyncio.wait_for(
                    channel.send(target.target, message, error_context),
                    timeout=self.notification_timeout
                )
                record.delivered = True
                delivered += 1
            except asyncio.TimeoutError:
                record.error = f"timed out after {self.notification_timeout}s"
                logger.error(f"Failed to send {target.type.value} alert to {target.target}: {record.error}")
            except NotificationError as e:
                record.error = str(e)
                logger.error(f"Failed to send {target.type.value} alert to {target.target}: {e}")
            except Exception as e:
                record.error = str(e)
                logger.error(f"Unexpected error sending {target.type.value} alert to {target.target}: {e}")

            self.alerts_sent.append(record)

        return delivered

    def build_escalation_rule(self, error_context: ErrorContext) -> AlertRule:
        return AlertRule(
            id=f"escalation_{error_context.error_id}",
            name="Error Escalation",
            condition=AlertCondition(
                metric="escalation",
                operator=ConditionOperator.GT,
                threshold=0,
                time_window=0
            ),
            severity=ErrorSeverity.CRITICAL,
            channels=[self.escalation_target]
        )

    async def escalate(self, error_context: ErrorContext) -> int:
        """Send a critical alert for an error whose recovery was exhausted."""
        logger.critical(f"Escalating error {error_context.error_id}")
        return await self.send_alert(self.build_escalation_rule(error_context), error_context)

    def get_alert_history(self, error_id: Optional[str] = None) -> List[SentAlert]:
        return [a for a in self.alerts_sent if error_id is None or a.error_id == error_id]
