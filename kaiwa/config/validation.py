"""
Configuration Validation
========================

Sanity checks for loaded settings with error/warning reporting.
"""

from typing import Any, List, Optional, Union
from dataclasses import dataclass
import re
import logging

from .config_manager import Settings

logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 15 * 60
MAX_TTL_SECONDS = 6 * 60 * 60
MIN_HISTORY = 20
MAX_HISTORY = 80
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

_URL_PATTERN = re.compile(
    r'^https?://'
    r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+[A-Z]{2,6}\.?|'
    r'localhost|'
    r'\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3})'
    r'(?::\d+)?'
    r'(?:/?|[/?]\S+)$', re.IGNORECASE)


@dataclass
class ValidationError:
    """Validation error details."""
    field_path: str
    message: str
    severity: str = "error"
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

    def add_warning(self, field_path: str, message: str, suggested_value: Optional[Any] = None):
        self.warnings.append(ValidationError(field_path, message, "warning", suggested_value))

    def get_summary(self) -> str:
        if self.is_valid:
            return f"Configuration valid. {len(self.warnings)} warnings."
        return f"Configuration invalid. {len(self.errors)} errors, {len(self.warnings)} warnings."


class ConfigValidator:
    """Settings validator."""

    @staticmethod
    def validate_port(port: Union[int, str], field_path: str, result: ValidationResult):
        """Validate port number."""
        try:
            port_num = int(port)
            if not (1 <= port_num <= 65535):
                result.add_error(field_path, f"Port {port_num} is out of valid range (1-65535)")
            elif port_num < 1024:
                result.add_warning(field_path, f"Port {port_num} is privileged (< 1024)")
        except (ValueError, TypeError):
            result.add_error(field_path, f"Invalid port value: {port}")

    @staticmethod
    def validate_url(url: str, field_path: str, result: ValidationResult):
        """Validate URL format."""
        if not isinstance(url, str) or not _URL_PATTERN.match(url):
            result.add_error(field_path, f"Invalid URL format: {url}")
        elif not url.startswith('https://'):
            result.add_warning(field_path, f"Non-HTTPS URL detected: {url}")

    @staticmethod
    def validate_context(settings: Settings, result: ValidationResult):
        prefix = "context"
        ctx = settings.context
        if ctx.ttl_seconds <= 0:
            result.add_error(f"{prefix}.ttl_seconds", "TTL must be positive", MAX_TTL_SECONDS)
        elif not (MIN_TTL_SECONDS <= ctx.ttl_seconds <= MAX_TTL_SECONDS):
            result.add_warning(
                f"{prefix}.ttl_seconds",
                f"TTL {ctx.ttl_seconds}s is outside the usual {MIN_TTL_SECONDS}-{MAX_TTL_SECONDS}s window",
                MAX_TTL_SECONDS,
            )

        if ctx.max_history <= 0:
            result.add_error(f"{prefix}.max_history", "History bound must be positive", MAX_HISTORY)
        elif not (MIN_HISTORY <= ctx.max_history <= MAX_HISTORY):
            result.add_warning(
                f"{prefix}.max_history",
                f"History bound {ctx.max_history} is outside {MIN_HISTORY}-{MAX_HISTORY}",
                MAX_HISTORY,
            )

        if ctx.max_entities <= 0:
            result.add_error(f"{prefix}.max_entities", "Entity pool size must be positive", 10)

    @staticmethod
    def validate_knowledge(settings: Settings, result: ValidationResult):
        prefix = "knowledge"
        knowledge = settings.knowledge
        if knowledge.timeout <= 0:
            result.add_error(f"{prefix}.timeout", "Backend timeout must be positive", 5.0)
        elif knowledge.timeout > 30:
            result.add_warning(f"{prefix}.timeout", "Long backend timeouts stall the reply for every fallback step")

        if knowledge.circuit_failure_threshold < 1:
            result.add_error(f"{prefix}.circuit_failure_threshold", "Threshold must be at least 1", 5)

        if not knowledge.user_agent:
            result.add_warning(f"{prefix}.user_agent", "Some providers reject requests without a User-Agent")

        for name, url in knowledge.endpoints.items():
            ConfigValidator.validate_url(url, f"{prefix}.endpoints.{name}", result)

    @staticmethod
    def validate_observability(settings: Settings, result: ValidationResult):
        log_level = settings.observability.log_level
        if str(log_level).upper() not in VALID_LOG_LEVELS:
            result.add_error("observability.log_level", f"Invalid log level. Must be one of: {VALID_LOG_LEVELS}")

    @classmethod
    def validate_settings(cls, settings: Settings) -> ValidationResult:
        """Validate complete settings."""
        result = ValidationResult()

        cls.validate_port(settings.server.port, "server.port", result)
        cls.validate_context(settings, result)
        cls.validate_knowledge(settings, result)
        cls.validate_observability(settings, result)

        if settings.is_production() and settings.debug_mode:
            result.add_error("debug_mode", "Debug mode must be disabled in production")

        logger.info(f"Configuration validation completed: {result.get_summary()}")
        return result


def validate_config(settings: Settings) -> ValidationResult:
    return ConfigValidator.validate_settings(settings)


def get_validation_errors(settings: Settings) -> List[str]:
    """Flat list of error messages, empty when the settings are valid."""
    return [f"{e.field_path}: {e.message}" for e in validate_config(settings).errors]
