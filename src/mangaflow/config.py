"""Configuration management."""

import os
from pathlib import Path
from pydantic import BaseModel, Field
from dotenv import load_dotenv

from .exceptions import ConfigurationError

# Load environment variables
load_dotenv()

SUPPORTED_PROVIDERS = ("anthropic", "openai-compatible")
SUPPORTED_STORES = ("sqlite", "memory")

# Input limits shared by the tool schemas and the project service
TITLE_MAX_LENGTH = 50
SCENE_COUNT_MIN = 1
SCENE_COUNT_MAX = 20


class Config(BaseModel):
    """Application configuration."""

    # API Keys
    anthropic_api_key: str = Field(
        default_factory=lambda: os.getenv("ANTHROPIC_API_KEY", ""),
        description="Anthropic API key"
    )
    openai_compat_api_key: str = Field(
        default_factory=lambda: os.getenv("OPENAI_COMPAT_API_KEY", ""),
        description="API key for an OpenAI-compatible endpoint (DeepSeek, Kimi, ...)"
    )
    openai_compat_base_url: str = Field(
        default_factory=lambda: os.getenv("OPENAI_COMPAT_BASE_URL", "https://api.deepseek.com/v1"),
        description="Base URL of the OpenAI-compatible endpoint"
    )
    openai_compat_model: str = Field(
        default_factory=lambda: os.getenv("OPENAI_COMPAT_MODEL", "deepseek-chat"),
        description="Model name for the OpenAI-compatible endpoint"
    )

    # Provider selection
    provider: str = Field(
        default_factory=lambda: os.getenv("MANGAFLOW_PROVIDER", "anthropic"),
        description="LLM provider: 'anthropic' or 'openai-compatible'"
    )

    # Checkpoint storage
    store_backend: str = Field(
        default_factory=lambda: os.getenv("MANGAFLOW_STORE", "sqlite"),
        description="Checkpoint store backend: 'sqlite' or 'memory'"
    )
    database_path: Path = Field(
        default_factory=lambda: Path(os.getenv("MANGAFLOW_DB_PATH", "./data/manga-flow.db")),
        description="SQLite database file for checkpoints"
    )

    # Model settings
    default_model: str = Field(
        default_factory=lambda: os.getenv("MANGAFLOW_MODEL", "claude-sonnet-4-20250514"),
        description="Default Claude model"
    )
    generation_timeout: float = Field(
        default_factory=lambda: float(os.getenv("MANGAFLOW_TIMEOUT", "30")),
        description="Seconds before a generation call is treated as failed",
        gt=0,
    )
    max_retries: int = Field(
        default_factory=lambda: int(os.getenv("MANGAFLOW_MAX_RETRIES", "3")),
        description="Retry attempts inside the LLM client wrappers",
        ge=1,
    )
    default_scene_count: int = Field(
        default_factory=lambda: int(os.getenv("MANGAFLOW_DEFAULT_SCENE_COUNT", "5")),
        description="Scene count used when the caller does not ask for one",
        ge=SCENE_COUNT_MIN,
        le=SCENE_COUNT_MAX,
    )

    class Config:
        """Pydantic config."""
        frozen = False

    def validate_required(self) -> None:
        """Validate that credentials for the selected provider are set.

        Raises:
            ConfigurationError: If the provider is unknown or its key is missing.
        """
        if self.provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unknown provider '{self.provider}'. "
                f"Expected one of: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        if self.provider == "anthropic" and not self.anthropic_api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not set")
        if self.provider == "openai-compatible":
            missing: list[str] = []
            if not self.openai_compat_api_key:
                missing.append("OPENAI_COMPAT_API_KEY")
            if not self.openai_compat_base_url:
                missing.append("OPENAI_COMPAT_BASE_URL")
            if missing:
                raise ConfigurationError(
                    f"Missing required provider configuration: {', '.join(missing)}. "
                    "Set the corresponding environment variables."
                )

    def validate_store(self) -> None:
        """Validate the checkpoint store selection."""
        if self.store_backend not in SUPPORTED_STORES:
            raise ConfigurationError(
                f"Unknown checkpoint store '{self.store_backend}'. "
                f"Expected one of: {', '.join(SUPPORTED_STORES)}"
            )


# Global config instance
config = Config()
