"""
CleanMod Configuration Module

This module manages application settings and environment variables using
pydantic-settings for type-safe configuration management.

Environment variables are loaded from .env file or system environment.
All sensitive values use SecretStr to prevent accidental logging.
"""

from functools import lru_cache
from typing import Literal
import logging
import sys

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


KNOWN_MODEL_KEYS = {"english-basic", "openai-omni"}


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Pydantic Settings automatically reads from:
    1. Environment variables
    2. .env file in working directory
    3. Default values defined here

    Backend credentials use SecretStr to prevent accidental exposure in logs.
    Both are optional at startup; a moderation request against a backend
    without a credential fails closed as a misconfiguration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cleanmod.db",
        description="SQLAlchemy async database URL",
    )

    auto_create_tables: bool = Field(
        default=True, description="Create missing tables at startup"
    )

    hf_api_token: SecretStr | None = Field(
        default=None, description="Hugging Face Inference API token"
    )

    hf_inference_base_url: str = Field(
        default="https://router.huggingface.co/hf-inference",
        description="Base URL of the Hugging Face Inference text classification API",
    )

    hf_model_id: str = Field(
        default="unitary/multilingual-toxic-xlm-roberta",
        description="Backend model used by the english-basic model key",
    )

    openai_api_key: SecretStr | None = Field(
        default=None, description="OpenAI API key for the moderation endpoint"
    )

    openai_moderation_model: str = Field(
        default="omni-moderation-latest",
        description="Backend model used by the openai-omni model key",
    )

    provider_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Upper bound on a single classification backend call",
    )

    default_model: str = Field(
        default="english-basic",
        description="Model key used when a request omits one and the plan names none",
    )

    default_monthly_quota: int = Field(
        default=5_000,
        ge=0,
        description="Monthly quota for tenants without an active subscription",
    )

    billing_timezone: str = Field(
        default="UTC",
        description="Clock used for billing months when a tenant has none configured",
    )

    block_threshold: float | None = Field(
        default=None,
        gt=0.0,
        le=1.0,
        description="Optional score at or above which content is blocked instead of flagged",
    )

    usage_retry_attempts: int = Field(
        default=3, ge=1, description="Attempts for a usage counter increment"
    )

    usage_retry_backoff_seconds: float = Field(
        default=0.05, ge=0.0, description="Initial backoff between usage increment attempts"
    )

    input_preview_max_length: int = Field(
        default=300, gt=0, description="Characters kept when storing an input preview"
    )

    track_metrics: bool = Field(
        default=True, description="Record in-process request metrics"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Application log level"
    )

    host: str = Field(default="0.0.0.0", description="Server bind host")

    port: int = Field(default=8000, description="Server bind port")

    debug: bool = Field(default=False, description="Enable debug mode")

    @field_validator("default_model")
    @classmethod
    def validate_default_model(cls, v: str) -> str:
        """Ensure default_model is one of the registered model keys."""
        if v not in KNOWN_MODEL_KEYS:
            raise ValueError(f"default_model must be one of {KNOWN_MODEL_KEYS}")
        return v

    def secret_or_none(self, name: str) -> str | None:
        """Return the plain value of a SecretStr setting, or None if unset or blank."""
        secret: SecretStr | None = getattr(self, name)
        if secret is None:
            return None
        value = secret.get_secret_value().strip()
        return value or None


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.

    Using lru_cache ensures settings are loaded once and reused,
    avoiding repeated file reads and environment parsing.

    Returns:
        Settings: The application settings singleton.
    """
    return Settings()


def configure_logging(settings: Settings) -> None:
    """
    Configure application logging based on settings.

    Sets up structured logging with timestamps and reduces noise
    from third-party HTTP and database libraries.

    Args:
        settings: The application settings instance.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
