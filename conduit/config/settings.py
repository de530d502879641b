"""
Global settings from environment variables.
"""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConduitSettings(BaseSettings):
    """
    Global configuration loaded from environment variables.

    Environment variables should be prefixed with CONDUIT_
    Example: CONDUIT_DEBUG=true, CONDUIT_OPENAI_API_KEY=sk-...
    """

    model_config = SettingsConfigDict(
        env_prefix="CONDUIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # Core settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_json: bool = False
    redact_keys: list[str] = Field(default_factory=list)

    # Agent loop
    max_iterations: int = Field(default=10, ge=1)
    max_prompt_bytes: int = Field(default=100 * 1024, ge=1)
    tool_timeout: float = Field(default=30.0, gt=0)

    # Memory
    short_memory_limit: int = Field(default=10, ge=1)
    long_memory_limit: int = Field(default=5, ge=1)
    sqlite_path: str = "conduit.db"

    # Transport
    retry_max_attempts: int = Field(default=3, ge=1)
    http_timeout: float = Field(default=60.0, gt=0)

    # Model Provider Settings
    # OpenAI (and any OpenAI-compatible endpoint)
    openai_api_key: SecretStr | None = None
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # Anthropic
    anthropic_api_key: SecretStr | None = None
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    anthropic_model: str = "claude-3-5-sonnet-latest"
    anthropic_version: str = "2023-06-01"

    # Gemini
    gemini_api_key: SecretStr | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-1.5-flash-latest"


# Global settings instance (singleton)
settings = ConduitSettings()


__all__ = ["ConduitSettings", "settings"]
