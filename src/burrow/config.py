"""Configuration management for Burrow."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .chat.retry import RetryOptions
from .chat.session import ChatConfig
from .chat.types import AuthType

DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_FALLBACK_MODEL = "gemini-2.5-flash"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BURROW_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Model Configuration
    model: str = Field(default=DEFAULT_MODEL, description="Primary model id")
    fallback_model: str = Field(default=DEFAULT_FALLBACK_MODEL, description="Model offered after persistent 429s")
    api_key: str | None = Field(default=None, description="API key for the LLM provider")
    api_base: str | None = Field(default=None, description="Optional API base URL")
    auth_type: AuthType = Field(default=AuthType.USE_API_KEY, description="How the session authenticated")
    max_output_tokens: int = Field(default=4096, description="Maximum tokens for responses")

    # Retry Configuration
    retry_max_attempts: int = Field(default=5, ge=1)
    retry_initial_delay: float = Field(default=5.0, ge=0)
    retry_max_delay: float = Field(default=30.0, ge=0)
    stream_max_retries: int = Field(default=2, ge=0)
    stream_retry_delay: float = Field(default=0.5, ge=0)

    # Process Configuration
    kill_grace_seconds: float = Field(default=0.2, ge=0, description="Delay before SIGKILL after SIGTERM")
    use_pty: bool = Field(default=False, description="Run shell commands inside a pseudo-terminal")
    workspace: Path | None = Field(default=None, description="Workspace directory path")

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Log level")

    def resolve_workspace(self) -> Path:
        return (self.workspace or Path.cwd()).resolve()

    def retry_options(self) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
        )

    def chat_config(self, model: str | None = None) -> ChatConfig:
        """Build the explicit config struct consumed by ``ChatSession``."""
        return ChatConfig(
            model=model or self.model,
            fallback_model=self.fallback_model,
            auth_type=self.auth_type,
            retry=self.retry_options(),
            stream_max_retries=self.stream_max_retries,
            stream_retry_delay=self.stream_retry_delay,
        )


def get_settings(**overrides: object) -> Settings:
    """Get application settings; keyword overrides win over the environment."""
    return Settings(**overrides)  # type: ignore[arg-type]
