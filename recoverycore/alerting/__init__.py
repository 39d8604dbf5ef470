"""
Alerting
========

Alert rules, notification channels and the alert engine.
"""

from .rules import (
    AlertCondition,
    AlertPriority,
    AlertRule,
    ChannelType,
    ConditionOperator,
    NotificationTarget,
    SuppressionRule,
    default_alert_rules
)
from .channels import (
    INotificationChannel,
    EmailChannel,
    SMTPConfig,
    SlackChannel,
    WebhookChannel,
    SMSChannel,
    PushChannel,
    format_alert_message
)
from .alert_engine import (
    AlertEngine,
    SentAlert,
    error_matches_metric,
    evaluate_condition,
    is_suppressed
)

__all__ = [
    "AlertCondition",
    "AlertPriority",
    "AlertRule",
    "ChannelType",
    "ConditionOperator",
    "NotificationTarget",
    "SuppressionRule",
    "default_alert_rules",
    "INotificationChannel",
    "EmailChannel",
    "SMTPConfig",
    "SlackChannel",
    "WebhookChannel",
    "SMSChannel",
    "PushChannel",
    "format_alert_message",
    "AlertEngine",
    "SentAlert",
    "error_matches_metric",
    "evaluate_condition",
    "is_suppressed",
]
