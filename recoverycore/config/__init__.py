"""
Configuration Management Module
===============================

This module provides:
- YAML settings with environment variable overrides
- Optional hot-reloading
- Settings validation
"""

from .config_manager import (
    Settings, ConfigManager, Environment,
    EngineConfig, PersistenceConfig, AlertingConfig, HealthConfig, ObservabilityConfig,
    configure_logging, load_config
)

from .validation import (
    ConfigValidator, ValidationError, ValidationResult, validate_config
)

__all__ = [
    "Settings", "ConfigManager", "Environment",
    "EngineConfig", "PersistenceConfig", "AlertingConfig", "HealthConfig", "ObservabilityConfig",
    "configure_logging", "load_config",
    "ConfigValidator", "ValidationError", "ValidationResult", "validate_config",
]
