"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("OPENAI_BASE_URL", "base_url"),
    )
    chat_model: str = Field(
        default="gpt-5-mini",
        validation_alias=AliasChoices("OPENAI_CHAT_MODEL", "chat_model"),
    )
    title_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices("OPENAI_TITLE_MODEL", "title_model"),
    )
    image_model: str = Field(
        default="gpt-image-1",
        validation_alias=AliasChoices("OPENAI_IMAGE_MODEL", "image_model"),
    )
    stream_responses: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "OPENAI_STREAM_RESPONSES",
            "stream_responses",
        ),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENAI_TIMEOUT", "timeout"),
        ge=1,
    )
    system_prompt_path: Path = Field(
        default_factory=lambda: Path("prompts/base_prompt.txt"),
        validation_alias=AliasChoices("SYSTEM_PROMPT_PATH", "system_prompt_path"),
    )
    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/chats.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )

    # Supabase identity (auth only; chat documents live in SQLite)
    supabase_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "SUPABASE_URL",
            "NEXT_PUBLIC_SUPABASE_URL",
        ),
    )
    supabase_anon_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices(
            "SUPABASE_ANON_KEY",
            "NEXT_PUBLIC_SUPABASE_ANON_KEY",
        ),
    )
    supabase_service_role_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY"),
    )

    stream_flush_min_chars: int = Field(
        default=3,
        ge=1,
        validation_alias=AliasChoices(
            "STREAM_FLUSH_MIN_CHARS",
            "stream_flush_min_chars",
        ),
    )
    stream_flush_interval_ms: int = Field(
        default=16,
        ge=0,
        validation_alias=AliasChoices(
            "STREAM_FLUSH_INTERVAL_MS",
            "stream_flush_interval_ms",
        ),
    )
    sse_ping_seconds: int = Field(
        default=15,
        ge=1,
        validation_alias=AliasChoices("SSE_PING_SECONDS", "sse_ping_seconds"),
    )
    title_shutdown_grace_seconds: float = Field(
        default=3.0,
        ge=0,
        validation_alias=AliasChoices(
            "TITLE_SHUTDOWN_GRACE_SECONDS",
            "title_shutdown_grace_seconds",
        ),
    )

    @property
    def stream_flush_interval(self) -> float:
        return self.stream_flush_interval_ms / 1000.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
