"""
Configuration Validation
=======================

Checks settings for values the engine cannot run with, plus warnings for
settings that will silently degrade alerting or health monitoring.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from ..alerting.rules import AlertRule, ChannelType
from .config_manager import Settings

logger = logging.getLogger(__name__)


@dataclass
class ValidationError:
    """Validation error details."""
    field_path: str
    message: str
    severity: str = "error"  # error, warning
    suggested_value: Optional[Any] = None


class ValidationResult:
    """Result of configuration validation."""

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []
        self.is_valid = True

    def add_error(self, field_path: str, message: str, suggested_value: Optional[Any] = None):
        self.errors.append(ValidationError(field_path, message, "error", suggested_value))
        self.is_valid = False

    def add_warning(self, field_path: str, message: str):
        self.warnings.append(ValidationError(field_path, message, "warning"))

    def get_summary(self) -> str:
        if self.is_valid:
            return f"Configuration valid. {len(self.warnings)} warnings."
        return f"Configuration invalid. {len(self.errors)} errors, {len(self.warnings)} warnings."


_URL_PATTERN = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)


class ConfigValidator:
    """Settings validator."""

    @staticmethod
    def validate_positive(value: Any, field_path: str, result: ValidationResult, allow_zero: bool = False):
        try:
            number = float(value)
        except (TypeError, ValueError):
            result.add_error(field_path, f"Invalid numeric value: {value}")
            return

        if number < 0 or (number == 0 and not allow_zero):
            result.add_error(field_path, f"{field_path} must be {'non-negative' if allow_zero else 'positive'}")

    @staticmethod
    def validate_port(port: Any, field_path: str, result: ValidationResult):
        try:
            port_num = int(port)
            if not (1 <= port_num <= 65535):
                result.add_error(field_path, f"Port {port_num} is out of valid range (1-65535)")
        except (ValueError, TypeError):
            result.add_error(field_path, f"Invalid port value: {port}")

    @staticmethod
    def validate_url(url: str, field_path: str, result: ValidationResult):
        if not _URL_PATTERN.match(url):
            result.add_error(field_path, f"Invalid URL format: {url}")
        elif not url.startswith("https://"):
            result.add_warning(field_path, f"Non-HTTPS URL detected: {url}")

    @staticmethod
    def validate_settings(settings: Settings) -> ValidationResult:
        result = ValidationResult()

        engine = settings.engine
        ConfigValidator.validate_positive(engine.base_delay, "engine.base_delay", result, allow_zero=True)
        ConfigValidator.validate_positive(engine.operation_timeout, "engine.operation_timeout", result)
        ConfigValidator.validate_positive(engine.monitoring_interval, "engine.monitoring_interval", result)
        ConfigValidator.validate_positive(engine.retention_days, "engine.retention_days", result)
        ConfigValidator.validate_positive(engine.breaker_failure_threshold,
                                          "engine.breaker_failure_threshold", result)
        ConfigValidator.validate_positive(engine.breaker_reset_timeout, "engine.breaker_reset_timeout", result)

        persistence = settings.persistence
        if persistence.backend not in ("memory", "postgresql"):
            result.add_error("persistence.backend", f"Unknown backend: {persistence.backend}", "memory")
        elif persistence.backend == "postgresql" and not persistence.dsn:
            result.add_error("persistence.dsn", "PostgreSQL backend requires a dsn (RECOVERY_DB_DSN)")
        if not persistence.fallback_dir:
            result.add_warning("persistence.fallback_dir", "No fallback directory; failed writes will be lost")

        alerting = settings.alerting
        ConfigValidator.validate_positive(alerting.notification_timeout, "alerting.notification_timeout", result)
        if alerting.smtp_host:
            ConfigValidator.validate_port(alerting.smtp_port, "alerting.smtp_port", result)
        else:
            result.add_warning("alerting.smtp_host", "SMTP not configured; email alerts will only be logged")
        if alerting.slack_webhook_url:
            ConfigValidator.validate_url(alerting.slack_webhook_url, "alerting.slack_webhook_url", result)

        try:
            ChannelType(alerting.escalation_channel)
        except ValueError:
            result.add_error("alerting.escalation_channel",
                             f"Unknown channel type: {alerting.escalation_channel}", "email")

        for index, rule in enumerate(alerting.rules):
            try:
                AlertRule.from_dict(rule)
            except (KeyError, TypeError, ValueError) as e:
                result.add_error(f"alerting.rules[{index}]", f"Invalid alert rule: {e}")

        health = settings.health
        ConfigValidator.validate_positive(health.probe_timeout, "health.probe_timeout", result)
        if health.status_url:
            ConfigValidator.validate_url(health.status_url, "health.status_url", result)

        if settings.observability.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            result.add_error("observability.log_level", f"Invalid log level: {settings.observability.log_level}",
                             "INFO")

        return result


def validate_config(settings: Settings) -> bool:
    """Validate settings, logging every finding."""
    result = ConfigValidator.validate_settings(settings)

    for error in result.errors:
        logger.error(f"Config error at {error.field_path}: {error.message}")
    for warning in result.warnings:
        logger.warning(f"Config warning at {warning.field_path}: {warning.message}")

    logger.info(result.get_summary())
    return result.is_valid
