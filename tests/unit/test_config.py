"""
Unit tests for configuration module.
"""

import pytest

from metamind.config import (
    get_config,
    validate_config,
    Environment,
    OrchestratorConfig,
)
from metamind.exceptions import ConfigurationError


class TestGetConfig:
    """Tests for configuration loading"""

    def test_loads_with_valid_env(self, mock_env_vars):
        """Test config loads successfully with valid environment"""
        get_config.cache_clear()

        config = get_config()

        assert config.gemini.api_keys == ("gemini-test-key-1", "gemini-test-key-2")
        assert config.openai.api_keys == ("sk-test-openai-key-12345",)
        assert config.claude.api_keys == ()
        assert config.env == Environment.DEVELOPMENT

    def test_rotation_keys_skip_blanks_and_duplicates(self, clean_env):
        """Test PREFIX_API_KEY_N values are collected in order without repeats"""
        clean_env.setenv("GEMINI_API_KEY", "k1")
        clean_env.setenv("GEMINI_API_KEY_2", "   ")
        clean_env.setenv("GEMINI_API_KEY_3", "k3")
        clean_env.setenv("GEMINI_API_KEY_4", "k1")
        get_config.cache_clear()

        assert get_config().gemini.api_keys == ("k1", "k3")

    def test_orchestrator_defaults(self, mock_env_vars):
        """Test default lifetime is ten minutes and grace is 120ms"""
        get_config.cache_clear()

        orchestrator = get_config().orchestrator

        assert orchestrator == OrchestratorConfig()
        assert orchestrator.default_cache_lifetime_ms == 600_000
        assert orchestrator.coalesce_grace_ms == 120
        assert orchestrator.supports_markup is False

    def test_orchestrator_overrides(self, mock_env_vars):
        """Test orchestrator settings are read from the environment"""
        mock_env_vars.setenv("AI_CACHE_TTL_MS", "5000")
        mock_env_vars.setenv("AI_COALESCE_GRACE_MS", "50")
        mock_env_vars.setenv("TTS_SUPPORTS_SSML", "true")
        mock_env_vars.setenv("AI_REALTIME_TIMEOUT", "3.5")
        get_config.cache_clear()

        orchestrator = get_config().orchestrator

        assert orchestrator.default_cache_lifetime_ms == 5000
        assert orchestrator.coalesce_grace_ms == 50
        assert orchestrator.supports_markup is True
        assert orchestrator.realtime_attempt_timeout == 3.5

    def test_invalid_numbers_fall_back_to_defaults(self, mock_env_vars):
        """Test unparseable numeric values use the defaults"""
        mock_env_vars.setenv("AI_CACHE_TTL_MS", "ten minutes")
        get_config.cache_clear()

        assert get_config().orchestrator.default_cache_lifetime_ms == 600_000

    def test_defaults_to_development(self, mock_env_vars):
        """Test defaults to development environment"""
        mock_env_vars.delenv("APP_ENV", raising=False)
        get_config.cache_clear()

        config = get_config()
        assert config.env == Environment.DEVELOPMENT
        assert config.debug is True

    def test_production_environment(self, mock_env_vars):
        """Test production environment settings"""
        mock_env_vars.setenv("APP_ENV", "production")
        mock_env_vars.delenv("LOG_LEVEL", raising=False)
        get_config.cache_clear()

        config = get_config()

        assert config.env == Environment.PRODUCTION
        assert config.debug is False
        assert config.logging.json_format is True
        assert config.logging.level == "INFO"

    def test_redis_url(self, mock_env_vars):
        """Test REDIS_URL enables the shared cache"""
        mock_env_vars.setenv("REDIS_URL", "redis://localhost:6379/0")
        get_config.cache_clear()

        assert get_config().cache.redis_url == "redis://localhost:6379/0"

    def test_config_is_cached(self, mock_env_vars):
        """Test config is cached between calls"""
        get_config.cache_clear()

        assert get_config() is get_config()

    def test_providers_mapping(self, mock_env_vars):
        """Test providers are exposed by name"""
        get_config.cache_clear()

        providers = get_config().providers

        assert set(providers) == {"gemini", "openai", "claude"}
        assert providers["gemini"].enabled
        assert not providers["claude"].enabled


class TestValidateConfig:
    """Tests for configuration validation"""

    def test_valid_config_passes(self, mock_env_vars):
        """Test valid configuration passes validation"""
        get_config.cache_clear()

        assert validate_config() is True

    def test_no_provider_keys_raises(self, clean_env):
        """Test at least one provider key is required"""
        get_config.cache_clear()

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config()

        assert "GEMINI_API_KEY" in str(exc_info.value)

    def test_invalid_openai_key_format(self, mock_env_vars):
        """Test OpenAI keys must start with sk-"""
        mock_env_vars.setenv("OPENAI_API_KEY", "not-an-openai-key")
        get_config.cache_clear()

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config()

        assert "sk-" in str(exc_info.value)

    def test_invalid_anthropic_key_format(self, mock_env_vars):
        """Test Anthropic keys must start with sk-ant-"""
        mock_env_vars.setenv("ANTHROPIC_API_KEY", "sk-wrong-prefix")
        get_config.cache_clear()

        with pytest.raises(ConfigurationError) as exc_info:
            validate_config()

        assert "sk-ant-" in str(exc_info.value)

    def test_negative_grace_rejected(self, mock_env_vars):
        """Test a negative coalescing grace is rejected"""
        mock_env_vars.setenv("AI_COALESCE_GRACE_MS", "-1")
        get_config.cache_clear()

        with pytest.raises(ConfigurationError):
            validate_config()
