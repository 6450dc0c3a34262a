"""
Configuration Manager
=====================

Environment-based settings for the chat server: YAML file, environment
variable overrides and typed dataclass sections.
"""

import os
import yaml
import logging
from pathlib import Path
from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from kaiwa.error_handling import ConfigurationError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class Environment(Enum):
    """Environment types for configuration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


@dataclass
class ServerConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=lambda: ["*"])
    max_message_length: int = 2000


@dataclass
class ContextConfig:
    """Per-user conversation context limits."""
    ttl_seconds: float = 6 * 60 * 60
    max_history: int = 80
    max_entities: int = 10


@dataclass
class NLPConfig:
    """Tokenizer, keyword and coreference settings."""
    enriched_keywords: bool = False
    connecting_particles: List[str] = field(default_factory=lambda: ["の"])
    min_keyword_length: int = 2
    pronouns: List[str] = field(default_factory=lambda: [
        "それ", "あれ", "これ", "ここ", "そこ", "あそこ", "この", "その", "あの",
    ])


@dataclass
class KnowledgeConfig:
    """External knowledge backend settings."""
    timeout: float = 5.0
    user_agent: str = "kaiwa/1.0"
    max_text_length: int = 600
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: float = 60.0
    web_summary_providers: List[str] = field(default_factory=lambda: ["duckduckgo", "wikidata"])
    endpoints: Dict[str, str] = field(default_factory=dict)


@dataclass
class ObservabilityConfig:
    """Logging and health settings."""
    log_level: str = "INFO"
    log_format: str = LOG_FORMAT
    log_file: Optional[str] = None
    health_endpoint: str = "/health"


@dataclass
class Settings:
    """
    Application settings.

    ``intents`` optionally replaces the built-in intent rule list (ordered
    ``{intent, patterns, mode}`` mappings); ``phrases`` overlays the reply
    phrase pools per persona.
    """
    environment: Environment = Environment.DEVELOPMENT
    app_name: str = "kaiwa"
    version: str = "1.0.0"
    debug_mode: bool = False

    server: ServerConfig = field(default_factory=ServerConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    nlp: NLPConfig = field(default_factory=NLPConfig)
    knowledge: KnowledgeConfig = field(default_factory=KnowledgeConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    intents: List[Dict[str, Any]] = field(default_factory=list)
    phrases: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary."""
        data = asdict(self)
        data['environment'] = self.environment.value
        return data

    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


# dotted settings path -> (environment variable, type)
ENV_OVERRIDES: Dict[str, tuple] = {
    'server.port': ('KAIWA_PORT', int),
    'context.ttl_seconds': ('KAIWA_CONTEXT_TTL_SECONDS', float),
    'knowledge.timeout': ('KAIWA_BACKEND_TIMEOUT', float),
    'knowledge.user_agent': ('KAIWA_USER_AGENT', str),
    'observability.log_level': ('KAIWA_LOG_LEVEL', str),
}


def _build_section(cls, data: Any, name: str):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Section '{name}' must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{name}': {sorted(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    """
    Loads and holds the application settings.

    The file is ``settings.{ENVIRONMENT}.yaml`` next to this module when it
    exists, else ``settings.yaml``; an explicit ``config_path`` wins over both.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._find_config_path()
        self._settings: Optional[Settings] = None
        self.load_config()

    def _find_config_path(self) -> str:
        """Find configuration file path based on environment."""
        env = os.environ.get("ENVIRONMENT", "development")
        config_dir = Path(__file__).parent

        env_config = config_dir / f"settings.{env}.yaml"
        if env_config.exists():
            return str(env_config)

        default_config = config_dir / "settings.yaml"
        if default_config.exists():
            return str(default_config)

        raise ConfigurationError("No configuration file found")

    def load_config(self) -> Settings:
        """Load configuration from file."""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load configuration: {e}")
            raise ConfigurationError(f"Cannot read {self.config_path}: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigurationError(f"{self.config_path} must contain a mapping")

        config_data = self._merge_environment_variables(config_data)
        self._settings = self._create_settings_from_dict(config_data)
        logger.info(f"Configuration loaded from {self.config_path}")
        return self._settings

    async def reload_config(self) -> Settings:
        """Reload configuration, keeping the current settings if the reload fails."""
        try:
            return self.load_config()
        except ConfigurationError as e:
            logger.error(f"Failed to reload configuration: {e}")
            if self._settings is None:
                raise
            return self._settings

    def _merge_environment_variables(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge environment variables with configuration data."""
        for config_path, (env_var, cast) in ENV_OVERRIDES.items():
            env_value = os.environ.get(env_var)
            if not env_value:
                continue
            try:
                value = cast(env_value)
            except ValueError as e:
                raise ConfigurationError(f"{env_var}={env_value!r} is not a valid {cast.__name__}") from e
            self._set_nested_value(config_data, config_path, value)
        return config_data

    def _set_nested_value(self, data: Dict[str, Any], path: str, value: Any):
        """Set nested dictionary value using dot notation."""
        keys = path.split('.')
        current = data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = value

    def _create_settings_from_dict(self, config_data: Dict[str, Any]) -> Settings:
        """Create Settings object from configuration dictionary."""
        try:
            environment = Environment(config_data.get('environment', 'development'))
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        sections: Dict[str, Callable] = {
            'server': ServerConfig,
            'context': ContextConfig,
            'nlp': NLPConfig,
            'knowledge': KnowledgeConfig,
            'observability': ObservabilityConfig,
        }
        settings_dict: Dict[str, Any] = {
            name: _build_section(cls, config_data.get(name), name)
            for name, cls in sections.items()
        }
        settings_dict['environment'] = environment
        settings_dict['app_name'] = config_data.get('app_name', 'kaiwa')
        settings_dict['version'] = str(config_data.get('version', '1.0.0'))
        settings_dict['debug_mode'] = bool(config_data.get('debug_mode', False))
        settings_dict['intents'] = list(config_data.get('intents') or [])
        settings_dict['phrases'] = dict(config_data.get('phrases') or {})

        return Settings(**settings_dict)

    @property
    def settings(self) -> Settings:
        """Get current settings."""
        if self._settings is None:
            self.load_config()
        return self._settings


_config_manager: Optional[ConfigManager] = None


def load_config(config_path: Optional[str] = None) -> Settings:
    """Load settings from a file (or the default lookup) without touching the global manager."""
    return ConfigManager(config_path).settings


def get_config_manager() -> ConfigManager:
    """Get global configuration manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_settings() -> Settings:
    """Get current application settings."""
    return get_config_manager().settings


async def reload_config() -> Settings:
    """Reload the global configuration."""
    return await get_config_manager().reload_config()


def configure_logging(observability: Optional[ObservabilityConfig] = None) -> None:
    """Apply the observability section to the root logger."""
    observability = observability or ObservabilityConfig()
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if observability.log_file:
        handlers.append(logging.FileHandler(observability.log_file, encoding='utf-8'))
    logging.basicConfig(
        level=getattr(logging, observability.log_level.upper(), logging.INFO),
        format=observability.log_format,
        handlers=handlers,
        force=True,
    )
