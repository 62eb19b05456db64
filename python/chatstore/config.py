"""Application settings loaded from environment variables.

Environment Configuration:
    CHATSTORE_ENV: Deployment environment (local | test | staging | prod)
    PERSIST_TRANSCRIPTS: Enable the persistence layer (default true)
    DATABASE_URL: SQLAlchemy connection string (defaults to a local SQLite file)
    DB_BUSY_TIMEOUT_MS: SQLite busy timeout applied on every connection

Retention:
    RETENTION_DAYS: Age in days after which unpinned conversations are swept

Encryption:
    ENCRYPTION_MASTER_KEY: 32-byte key encryption key (hex, base64 or raw).
        Optional in local/test, where sensitive values fall back to plaintext.
        Required in staging/prod.

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for the worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    """Valid deployment environments."""

    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class Settings(BaseSettings):
    """Application configuration.

    Settings are loaded from environment variables.
    Validation rules:
    - DATABASE_URL must not be empty while persistence is enabled
    - ENCRYPTION_MASTER_KEY is required in staging and prod only
    """

    chatstore_env: Environment = Field(default=Environment.LOCAL, alias="CHATSTORE_ENV")

    # Persistence
    persist_transcripts: bool = Field(default=True, alias="PERSIST_TRANSCRIPTS")
    database_url: str = Field(default="sqlite:///./data/chatstore.db", alias="DATABASE_URL")
    db_busy_timeout_ms: int = Field(default=5000, alias="DB_BUSY_TIMEOUT_MS")

    # Retention sweep
    retention_days: int = Field(default=30, alias="RETENTION_DAYS")

    # Envelope encryption master key (KEK)
    encryption_master_key: str | None = Field(default=None, alias="ENCRYPTION_MASTER_KEY")

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        """Ensure required settings are set for the current environment."""
        if self.persist_transcripts and not self.database_url:
            raise ValueError("PERSIST_TRANSCRIPTS=true but DATABASE_URL is empty")

        if self.retention_days < 1:
            raise ValueError("RETENTION_DAYS must be at least 1")

        # The master key is optional locally (plaintext fallback) but not in deployed envs
        if self.chatstore_env in (Environment.STAGING, Environment.PROD):
            if not self.encryption_master_key:
                raise ValueError(
                    f"ENCRYPTION_MASTER_KEY is required for CHATSTORE_ENV={self.chatstore_env.value}"
                )

        return self

    @property
    def effective_celery_broker_url(self) -> str | None:
        """Return Celery broker URL, falling back to REDIS_URL if not set."""
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        """Return Celery result backend URL, falling back to REDIS_URL if not set."""
        return self.celery_result_backend or self.redis_url


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If required settings are missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
