"""
Tests for configuration loading and validation
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from mangaflow.config import Config
from mangaflow.exceptions import ConfigurationError


class TestConfigFromEnvironment:
    """Tests for environment-driven defaults."""

    def test_reads_environment(self, monkeypatch):
        """Test that settings come from environment variables."""
        monkeypatch.setenv("MANGAFLOW_PROVIDER", "openai-compatible")
        monkeypatch.setenv("MANGAFLOW_STORE", "memory")
        monkeypatch.setenv("MANGAFLOW_DB_PATH", "/tmp/flow.db")
        monkeypatch.setenv("MANGAFLOW_TIMEOUT", "12.5")
        monkeypatch.setenv("MANGAFLOW_DEFAULT_SCENE_COUNT", "8")

        cfg = Config()

        assert cfg.provider == "openai-compatible"
        assert cfg.store_backend == "memory"
        assert cfg.database_path == Path("/tmp/flow.db")
        assert cfg.generation_timeout == 12.5
        assert cfg.default_scene_count == 8

    def test_defaults(self, monkeypatch):
        """Test the built-in defaults."""
        for name in ("MANGAFLOW_PROVIDER", "MANGAFLOW_STORE", "MANGAFLOW_TIMEOUT", "MANGAFLOW_DEFAULT_SCENE_COUNT"):
            monkeypatch.delenv(name, raising=False)

        cfg = Config()

        assert cfg.provider == "anthropic"
        assert cfg.store_backend == "sqlite"
        assert cfg.generation_timeout == 30
        assert cfg.default_scene_count == 5

    def test_scene_count_bounds(self, monkeypatch):
        """Test that an out-of-range default scene count is rejected."""
        monkeypatch.setenv("MANGAFLOW_DEFAULT_SCENE_COUNT", "50")

        with pytest.raises(ValidationError):
            Config()


class TestValidateRequired:
    """Tests for credential validation."""

    def test_anthropic_key_missing(self):
        """Test the Anthropic provider without a key."""
        cfg = Config(provider="anthropic", anthropic_api_key="")

        with pytest.raises(ConfigurationError, match="ANTHROPIC_API_KEY"):
            cfg.validate_required()

    def test_anthropic_key_present(self):
        """Test a complete Anthropic configuration."""
        Config(provider="anthropic", anthropic_api_key="sk-test").validate_required()

    def test_openai_compatible_missing_key(self):
        """Test the OpenAI-compatible provider without a key."""
        cfg = Config(provider="openai-compatible", openai_compat_api_key="")

        with pytest.raises(ConfigurationError, match="OPENAI_COMPAT_API_KEY"):
            cfg.validate_required()

    def test_unknown_provider(self):
        """Test a provider name that is not supported."""
        with pytest.raises(ConfigurationError, match="Unknown provider"):
            Config(provider="carrier-pigeon").validate_required()

    def test_unknown_store(self):
        """Test a store backend that is not supported."""
        with pytest.raises(ConfigurationError, match="Unknown checkpoint store"):
            Config(store_backend="redis").validate_store()
