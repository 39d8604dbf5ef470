"""
Configuration Manager
====================

YAML-backed settings for the error handling engine with environment variable
overrides, validation and optional hot-reloading.
"""

import asyncio
import logging
import os
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


class Environment(Enum):
    """Environment types for configuration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


@dataclass
class EngineConfig:
    """Recovery engine behaviour."""
    base_delay: float = 1.0  # seconds
    operation_timeout: float = 30.0
    monitoring_interval: float = 60.0
    retention_days: int = 7
    trend_threshold: int = 5
    breaker_failure_threshold: int = 5
    breaker_reset_timeout: float = 30.0
    executor_timeout: float = 10.0


@dataclass
class PersistenceConfig:
    """Error log persistence."""
    backend: str = "memory"
    dsn: str = ""
    table_name: str = "error_logs"
    pool_size: int = 5
    command_timeout: float = 10.0
    fallback_dir: str = ".recoverycore/fallback"
    fallback_max_entries: int = 1000

    def __post_init__(self):
        self.dsn = self.dsn or os.environ.get("RECOVERY_DB_DSN", "")


@dataclass
class AlertingConfig:
    """Alert rules and notification channels."""
    notification_timeout: float = 10.0
    alerts_email: str = "alerts@company.com"
    oncall_email: str = "oncall@company.com"
    slack_channel: str = "#alerts"
    escalation_channel: str = "email"
    escalation_target: str = "ops@company.com"
    use_default_rules: bool = True
    rules: List[Dict[str, Any]] = field(default_factory=list)

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_from: str = "alerts@recoverycore.local"
    smtp_use_tls: bool = True

    slack_webhook_url: str = ""

    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""


@dataclass
class HealthConfig:
    """Health probe targets."""
    probe_timeout: float = 5.0
    status_url: str = ""
    redis_url: str = ""
    queue_key: str = "automation:jobs"
    queue_backlog_warning: int = 1000
    min_success_rate: float = 80.0


@dataclass
class ObservabilityConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file: str = ""


@dataclass
class Settings:
    """Application settings."""
    environment: Environment = Environment.DEVELOPMENT
    app_name: str = "RecoveryCore"
    version: str = "1.0.0"

    engine: EngineConfig = field(default_factory=EngineConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = asdict(self)
        data["environment"] = self.environment.value
        return data

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


def configure_logging(config: ObservabilityConfig):
    """Apply logging configuration to the root logger."""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=config.log_format,
        handlers=handlers,
        force=True
    )


class ConfigFileHandler(FileSystemEventHandler):
    """File system event handler for configuration hot-reloading."""

    def __init__(self, config_manager: "ConfigManager", loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self.config_manager = config_manager
        self.loop = loop

    def on_modified(self, event):
        if event.is_directory or Path(event.src_path) != Path(self.config_manager.config_path):
            return

        logger.info(f"Configuration file modified: {event.src_path}")
        # Observer callbacks run on the watchdog thread
        if self.loop and self.loop.is_running():
            asyncio.run_coroutine_threadsafe(self.config_manager.reload_config(), self.loop)
        else:
            self.config_manager.load_config()


class ConfigManager:
    """Configuration manager with environment overrides and hot-reloading."""

    ENV_OVERRIDES = {
        "persistence.backend": "RECOVERY_DB_BACKEND",
        "persistence.dsn": "RECOVERY_DB_DSN",
        "alerting.smtp_host": "SMTP_HOST",
        "alerting.smtp_username": "SMTP_USERNAME",
        "alerting.smtp_password": "SMTP_PASSWORD",
        "alerting.slack_webhook_url": "SLACK_WEBHOOK_URL",
        "alerting.twilio_account_sid": "TWILIO_ACCOUNT_SID",
        "alerting.twilio_auth_token": "TWILIO_AUTH_TOKEN",
        "alerting.twilio_from_number": "TWILIO_FROM_NUMBER",
        "health.status_url": "RECOVERY_STATUS_URL",
        "health.redis_url": "REDIS_URL",
        "observability.log_level": "LOG_LEVEL",
    }

    def __init__(self, config_path: Optional[str] = None, enable_hot_reload: bool = False,
                 configure_logs: bool = True):
        self.config_path = config_path or self._find_config_path()
        self.enable_hot_reload = enable_hot_reload
        self.configure_logs = configure_logs
        self._settings: Optional[Settings] = None
        self._observer = None

        self.load_config()

        if self.enable_hot_reload:
            self._setup_hot_reload()

    def _find_config_path(self) -> str:
        """Find configuration file path based on environment."""
        explicit = os.environ.get("RECOVERY_CONFIG")
        if explicit:
            return explicit

        env = os.environ.get("ENVIRONMENT", "development")
        config_dir = Path(__file__).parent

        env_config = config_dir / f"settings.{env}.yaml"
        if env_config.exists():
            return str(env_config)

        default_config = config_dir / "settings.yaml"
        if default_config.exists():
            return str(default_config)

        raise FileNotFoundError("No configuration file found")

    def load_config(self) -> Settings:
        """Load configuration from file."""
        try:
            with open(self.config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}

            config_data = self._merge_environment_variables(config_data)
            self._settings = self._create_settings_from_dict(config_data)
        except Exception as e:
            logger.error(f"Failed to load configuration: {e}")
            raise

        if self.configure_logs:
            configure_logging(self._settings.observability)

        logger.info(f"Configuration loaded from {self.config_path}")
        return self._settings

    async def reload_config(self) -> Settings:
        """Reload configuration, keeping the current settings on failure."""
        try:
            return self.load_config()
        except Exception as e:
            logger.error(f"Failed to reload configuration: {e}")
            if self._settings is None:
                raise RuntimeError("No valid configuration available")
            return self._settings

    def _merge_environment_variables(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        for config_path, env_var in self.ENV_OVERRIDES.items():
            env_value = os.environ.get(env_var)
            if env_value:
                self._set_nested_value(config_data, config_path, env_value)
        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: Any):
        """Set nested dictionary value using dot notation."""
        keys = path.split(".")
        current = data

        for key in keys[:-1]:
            if current.get(key) is None:
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _create_settings_from_dict(self, config_data: Dict[str, Any]) -> Settings:
        settings_dict: Dict[str, Any] = {
            "environment": Environment(config_data.get("environment", "development")),
            "app_name": config_data.get("app_name", "RecoveryCore"),
            "version": config_data.get("version", "1.0.0"),
        }

        sections = {
            "engine": EngineConfig,
            "persistence": PersistenceConfig,
            "alerting": AlertingConfig,
            "health": HealthConfig,
            "observability": ObservabilityConfig,
        }
        for name, config_cls in sections.items():
            if config_data.get(name):
                settings_dict[name] = config_cls(**config_data[name])

        return Settings(**settings_dict)

    def _setup_hot_reload(self):
        """Watch the configuration directory for changes."""
        if self._observer:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        self._observer = Observer()
        handler = ConfigFileHandler(self, loop)
        config_dir = Path(self.config_path).parent

        self._observer.schedule(handler, str(config_dir), recursive=False)
        self._observer.start()

        logger.info("Configuration hot-reloading enabled")

    @property
    def settings(self) -> Settings:
        """Get current settings."""
        if self._settings is None:
            self.load_config()
        return self._settings

    def stop(self):
        if self._observer:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()


def load_config(config_path: Optional[str] = None, **kwargs) -> Settings:
    """Load settings from a YAML file (or the packaged default)."""
    return ConfigManager(config_path, **kwargs).settings
