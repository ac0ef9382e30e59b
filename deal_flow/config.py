"""Application configuration via Pydantic BaseSettings."""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    development = "development"
    staging = "staging"
    production = "production"


class Settings(BaseSettings):
    """Settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    ENVIRONMENT: Environment = Environment.development
    LOG_LEVEL: str = "INFO"

    # Storage (None = in-memory only)
    DEAL_STORAGE_PATH: Optional[str] = None
    BROKER_STORAGE_PATH: Optional[str] = None
    SEED_SAMPLE_DATA: bool = True

    # Broker defaults when a broker record has none
    DEFAULT_COMMISSION_RATE: float = 0.03
    DEFAULT_BROKER_SPLIT: float = 0.50


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
