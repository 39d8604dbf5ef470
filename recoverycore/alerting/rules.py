"""
Alert Rules
==========

Static alert rule configuration and the default rule set.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..error_handling.models import ErrorSeverity


class ChannelType(Enum):
    """Notification channel types."""
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    SMS = "sms"
    PUSH = "push"


class AlertPriority(Enum):
    """Delivery priority of a notification target."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ConditionOperator(Enum):
    """Comparison operators for alert conditions."""
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    CONTAINS = "contains"
    PATTERN = "pattern"


@dataclass
class AlertCondition:
    """Condition evaluated against the error log window."""
    metric: str
    operator: ConditionOperator
    threshold: Union[int, float, str]
    time_window: int  # seconds
    frequency: int = 1  # occurrences

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metric": self.metric,
            "operator": self.operator.value,
            "threshold": self.threshold,
            "time_window": self.time_window,
            "frequency": self.frequency
        }


@dataclass
class NotificationTarget:
    """Where and how urgently to notify."""
    type: ChannelType
    target: str
    priority: AlertPriority = AlertPriority.MEDIUM
    template: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "target": self.target,
            "priority": self.priority.value,
            "template": self.template
        }


@dataclass
class SuppressionRule:
    """Suppresses a rule for errors whose component appears in ``condition``."""
    condition: str
    duration: int  # seconds
    reason: str = ""

    def matches(self, component: str) -> bool:
        return bool(component) and component in self.condition


@dataclass
class AlertRule:
    """Alert rule configuration."""
    id: str
    name: str
    condition: AlertCondition
    severity: ErrorSeverity
    channels: List[NotificationTarget]
    enabled: bool = True
    suppression_rules: List[SuppressionRule] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "condition": self.condition.to_dict(),
            "severity": self.severity.value,
            "channels": [channel.to_dict() for channel in self.channels],
            "enabled": self.enabled,
            "suppression_rules": [
                {"condition": s.condition, "duration": s.duration, "reason": s.reason}
                for s in self.suppression_rules
            ]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AlertRule":
        """Create a rule from its configuration mapping."""
        condition = dict(data["condition"])
        condition["operator"] = ConditionOperator(condition["operator"])

        channels = []
        for channel in data.get("channels", []):
            channels.append(NotificationTarget(
                type=ChannelType(channel["type"]),
                target=channel["target"],
                priority=AlertPriority(channel.get("priority", "medium")),
                template=channel.get("template")
            ))

        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            condition=AlertCondition(**condition),
            severity=ErrorSeverity(data.get("severity", "medium")),
            channels=channels,
            enabled=data.get("enabled", True),
            suppression_rules=[SuppressionRule(**s) for s in data.get("suppression_rules", [])]
        )


def default_alert_rules(alerts_email: str = "alerts@company.com",
                        oncall_email: str = "oncall@company.com",
                        slack_channel: str = "#alerts") -> List[AlertRule]:
    """High error rate and critical error rules."""
    return [
        AlertRule(
            id="high_error_rate",
            name="High Error Rate",
            condition=AlertCondition(
                metric="error_count",
                operator=ConditionOperator.GT,
                threshold=10,
                time_window=300,
                frequency=10
            ),
            severity=ErrorSeverity.HIGH,
            channels=[NotificationTarget(ChannelType.EMAIL, alerts_email, AlertPriority.HIGH)]
        ),
        AlertRule(
            id="critical_errors",
            name="Critical Errors",
            condition=AlertCondition(
                metric="critical_errors",
                operator=ConditionOperator.GT,
                threshold=1,
                time_window=60,
                frequency=1
            ),
            severity=ErrorSeverity.CRITICAL,
            channels=[
                NotificationTarget(ChannelType.EMAIL, oncall_email, AlertPriority.URGENT),
                NotificationTarget(ChannelType.SLACK, slack_channel, AlertPriority.URGENT)
            ]
        )
    ]
