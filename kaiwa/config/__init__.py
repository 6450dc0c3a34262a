"""
Configuration Management Module
===============================

Settings dataclasses, YAML loading with environment overrides, logging
setup and validation.
"""

from .config_manager import (
    Settings, ConfigManager, Environment,
    ServerConfig, ContextConfig, NLPConfig, KnowledgeConfig, ObservabilityConfig,
    load_config, get_config_manager, get_settings, reload_config, configure_logging
)

from .validation import (
    ConfigValidator, ValidationError, ValidationResult,
    validate_config, get_validation_errors
)

__all__ = [
    "Settings", "ConfigManager", "Environment",
    "ServerConfig", "ContextConfig", "NLPConfig", "KnowledgeConfig", "ObservabilityConfig",
    "load_config", "get_config_manager", "get_settings", "reload_config", "configure_logging",

    "ConfigValidator", "ValidationError", "ValidationResult",
    "validate_config", "get_validation_errors"
]
