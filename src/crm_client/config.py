"""Client configuration via Pydantic BaseSettings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class StoreBackend(str, Enum):
    memory = "memory"
    file = "file"
    redis = "redis"


class Settings(BaseSettings):
    """Client settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Remote CRM API (empty base URL = offline, every call fails at transport level)
    API_BASE_URL: str = ""
    API_PATH_PREFIX: str = "/api"
    API_TOKEN: str = ""
    API_TIMEOUT: float = 10.0
    REMOTE_MAX_ATTEMPTS: int = 1

    # Local fallback store
    LOCAL_STORE_BACKEND: StoreBackend = StoreBackend.file
    LOCAL_STORE_PATH: str = ".crm_store"
    LOCAL_STORE_PREFIX: str = "crm"
    REDIS_URL: str = "redis://localhost:6379/0"

    # Activity log
    ACTIVITY_LOG_MAX_ENTRIES: int = 1000
    ACTIVITY_RECENT_DEFAULT: int = 50

    # Remote health
    CIRCUIT_FAILURE_THRESHOLD: int = 3
    CIRCUIT_RESET_SECONDS: float = 30.0

    # Environment
    ENVIRONMENT: Environment = Environment.development

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def api_url(self) -> str:
        """Base URL plus path prefix, without a trailing slash."""
        return f"{self.API_BASE_URL.rstrip('/')}{self.API_PATH_PREFIX}".rstrip("/")

    @property
    def is_offline(self) -> bool:
        return not self.API_BASE_URL.strip()


@lru_cache
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
