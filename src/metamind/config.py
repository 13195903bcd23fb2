"""
Centralized Configuration Management

Loads configuration from environment variables with sensible defaults.
Supports development, staging, and production environments.
"""

import os
from dataclasses import dataclass, field
from typing import Optional
from enum import Enum
from functools import lru_cache

from .exceptions import ConfigurationError, MissingConfigError


class Environment(Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# Highest numbered rotation key we look for, e.g. GEMINI_API_KEY_5
MAX_ROTATION_KEYS = 5


@dataclass(frozen=True)
class ProviderConfig:
    """One LLM provider and its ordered rotation keys"""
    name: str
    api_keys: tuple[str, ...] = ()
    default_model: str = ""
    base_url: str = ""
    timeout_seconds: float = 30.0

    @property
    def enabled(self) -> bool:
        return len(self.api_keys) > 0


@dataclass(frozen=True)
class OrchestratorConfig:
    """Request orchestration tuning"""
    default_cache_lifetime_ms: int = 10 * 60 * 1000
    coalesce_grace_ms: int = 120
    transient_retries: int = 1
    retry_min_wait: float = 0.2
    retry_max_wait: float = 2.0
    realtime_attempt_timeout: float = 15.0
    analysis_attempt_timeout: float = 45.0
    supports_markup: bool = False


@dataclass(frozen=True)
class CacheConfig:
    """Cache store configuration"""
    redis_url: Optional[str] = None
    key_prefix: str = "metamind:"
    sweep_interval_seconds: float = 60.0


@dataclass(frozen=True)
class MetricsConfig:
    """Metric sink configuration"""
    enabled: bool = True
    db_path: Optional[str] = None


@dataclass(frozen=True)
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    json_format: bool = False
    log_file: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration"""
    env: Environment
    gemini: ProviderConfig
    openai: ProviderConfig
    claude: ProviderConfig
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    debug: bool = False

    @property
    def providers(self) -> dict[str, ProviderConfig]:
        return {p.name: p for p in (self.gemini, self.openai, self.claude)}


def _get_env(key: str, default: Optional[str] = None, required: bool = False) -> Optional[str]:
    """Get environment variable with optional requirement check"""
    value = os.getenv(key, default)
    if required and not value:
        raise MissingConfigError(key)
    return value


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable"""
    value = os.getenv(key, "").lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer environment variable"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get float environment variable"""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _get_rotation_keys(prefix: str) -> tuple[str, ...]:
    """
    Collect PREFIX_API_KEY, PREFIX_API_KEY_2 ... PREFIX_API_KEY_N in order.

    Blank and duplicate values are skipped so the same key is never tried twice.
    """
    names = [f"{prefix}_API_KEY"] + [
        f"{prefix}_API_KEY_{i}" for i in range(2, MAX_ROTATION_KEYS + 1)
    ]
    keys: list[str] = []
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value and value not in keys:
            keys.append(value)
    return tuple(keys)


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Load and cache application configuration.

    Uses @lru_cache to ensure config is loaded once and reused.
    Call get_config.cache_clear() to reload configuration.
    """
    env_str = _get_env("APP_ENV", "development")
    try:
        env = Environment(env_str.lower())
    except ValueError:
        env = Environment.DEVELOPMENT

    is_prod = env == Environment.PRODUCTION

    gemini = ProviderConfig(
        name="gemini",
        api_keys=_get_rotation_keys("GEMINI"),
        default_model=_get_env("GEMINI_MODEL", "gemini-2.0-flash"),
        base_url=_get_env("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1"),
        timeout_seconds=_get_env_float("GEMINI_TIMEOUT", 30.0),
    )
    openai = ProviderConfig(
        name="openai",
        api_keys=_get_rotation_keys("OPENAI"),
        default_model=_get_env("OPENAI_MODEL", "gpt-4o-mini"),
        base_url=_get_env("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        timeout_seconds=_get_env_float("OPENAI_TIMEOUT", 30.0),
    )
    claude = ProviderConfig(
        name="claude",
        api_keys=_get_rotation_keys("ANTHROPIC"),
        default_model=_get_env("CLAUDE_MODEL", "claude-sonnet-4-20250514"),
        timeout_seconds=_get_env_float("CLAUDE_TIMEOUT", 60.0),
    )

    return AppConfig(
        env=env,
        debug=_get_env_bool("DEBUG", default=not is_prod),
        gemini=gemini,
        openai=openai,
        claude=claude,
        orchestrator=OrchestratorConfig(
            default_cache_lifetime_ms=_get_env_int("AI_CACHE_TTL_MS", 10 * 60 * 1000),
            coalesce_grace_ms=_get_env_int("AI_COALESCE_GRACE_MS", 120),
            transient_retries=_get_env_int("AI_TRANSIENT_RETRIES", 1),
            realtime_attempt_timeout=_get_env_float("AI_REALTIME_TIMEOUT", 15.0),
            analysis_attempt_timeout=_get_env_float("AI_ANALYSIS_TIMEOUT", 45.0),
            supports_markup=_get_env_bool("TTS_SUPPORTS_SSML", False),
        ),
        cache=CacheConfig(
            redis_url=_get_env("REDIS_URL"),
            key_prefix=_get_env("AI_CACHE_PREFIX", "metamind:"),
            sweep_interval_seconds=_get_env_float("AI_CACHE_SWEEP_SECONDS", 60.0),
        ),
        metrics=MetricsConfig(
            enabled=_get_env_bool("AI_METRICS_ENABLED", True),
            db_path=_get_env("AI_METRICS_DB", "./data/metamind.db"),
        ),
        logging=LoggingConfig(
            level=_get_env("LOG_LEVEL", "DEBUG" if not is_prod else "INFO"),
            json_format=is_prod,
            log_file=_get_env("LOG_FILE"),
        ),
    )


def validate_config() -> bool:
    """
    Validate configuration on startup.

    Returns True if valid, raises ConfigurationError if not.
    """
    try:
        config = get_config()

        if not (config.gemini.enabled or config.openai.enabled or config.claude.enabled):
            raise ConfigurationError(
                "At least one provider key is required: set GEMINI_API_KEY, "
                "OPENAI_API_KEY or ANTHROPIC_API_KEY"
            )

        for key in config.openai.api_keys:
            if not key.startswith("sk-"):
                raise ConfigurationError("OPENAI_API_KEY values should start with 'sk-'")

        for key in config.claude.api_keys:
            if not key.startswith("sk-ant-"):
                raise ConfigurationError(
                    "ANTHROPIC_API_KEY should start with 'sk-ant-'. "
                    "Get a valid key at https://console.anthropic.com"
                )

        if config.orchestrator.coalesce_grace_ms < 0:
            raise ConfigurationError("AI_COALESCE_GRACE_MS must not be negative")

        return True

    except ConfigurationError:
        raise
    except Exception as e:
        raise ConfigurationError(f"Configuration validation failed: {e}")
