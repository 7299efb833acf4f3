"""Centralized gateway configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables.

    Provider credentials use SecretStr to prevent accidental logging.
    Each credential variable may hold several keys separated by commas
    or newlines; KeyPool splits them on every request.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"

    # --- Provider credentials ---
    gemini_api_key: SecretStr | None = None
    # Legacy single-variable Gemini key, read when GEMINI_API_KEY is unset
    api_key: SecretStr | None = None
    groq_api_key: SecretStr | None = None
    openrouter_api_key: SecretStr | None = None

    # --- OpenAI-compatible endpoints ---
    # Gemini goes through google-genai with its built-in endpoint.
    groq_base_url: str = "https://api.groq.com/openai/v1"
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    openrouter_referer: str = "http://localhost"
    openrouter_title: str = "Academic Architect"

    # --- Resilience ---
    request_timeout: float = 120.0
    quota_retry_delay: float = 0.5
    backoff_attempts: int = 3
    backoff_initial_delay: float = 2.0
    batch_width: int = 3

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from academic_gateway.config import get_settings
        settings = get_settings()
    """
    return Settings()
