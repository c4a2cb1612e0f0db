"""
Voice Intake Service settings.

Environment variables win over `.env.local`. Only the OpenAI key and
the Supabase credentials have no usable default; everything else is
tuned for a single-site deployment.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """All runtime knobs. Copy `.env.example` to `.env.local` for local runs."""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── OpenAI (speech + extraction) ─────────────────────────────
    openai_api_key: str = Field(default="", description="OpenAI API key for transcription and extraction")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI-compatible API base URL")
    transcription_model: str = Field(default="whisper-1", description="Speech-to-text model")
    extraction_model: str = Field(default="gpt-4o-mini", description="Chat model used for structured extraction")
    extraction_temperature: float = Field(default=0.2, ge=0.0, le=1.0, description="Sampling temperature for extraction")
    extraction_max_tokens: int = Field(default=1500, ge=100, le=8000, description="Token ceiling for extraction responses")
    llm_timeout_seconds: float = Field(default=60.0, gt=0, description="HTTP timeout for model calls")

    # ── Locale ───────────────────────────────────────────────────
    voice_language: str = Field(default="es", description="Single locale used for transcription and prompts")

    # ── Supabase ─────────────────────────────────────────────────
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")

    # ── Redis (notification outbox) ──────────────────────────────
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    notification_queue_key: str = Field(default="voice:notifications", description="Redis list used as notification outbox")
    redis_socket_timeout: float = Field(default=2.0, gt=0, le=30, description="Connect and command timeout for outbox pushes")

    # ── Discord ──────────────────────────────────────────────────
    discord_webhook_url: str = Field(default="", description="Webhook that receives new-record notifications")
    app_base_url: str = Field(default="http://localhost:3000", description="Base URL used for links in notifications")

    # ── Entity Resolution ────────────────────────────────────────
    resolver_threshold: float = Field(default=0.70, ge=0.0, le=1.0, description="Minimum similarity for a fuzzy match")
    resolver_tie_margin: float = Field(default=0.0, ge=0.0, le=0.2, description="Scores this close to the best count as a tie")
    clarification_max_options: int = Field(default=10, ge=1, le=100, description="Options shown to the user when nothing matched")

    # ── Operational Limits ───────────────────────────────────────
    max_audio_bytes: int = Field(default=25 * 1024 * 1024, ge=1024, description="Largest accepted audio upload")
    max_delivery_attempts: int = Field(default=3, ge=1, le=10, description="Notification delivery attempts per event")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("openai_base_url", "app_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {value}")
        return level

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read once."""
    return Settings()
