"""Configuration management for the media vault application.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram — get_settings()
=============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1 — Import**::
    from mediavault.config import get_settings

**Step 2 — Get settings**::
    settings = get_settings()
    protocol = settings.AUTHENTICATION_PROTOCOL

**Step 3 — Override through the environment**::
    AUTHENTICATION_PROTOCOL=both
    TRANSFORMATIONS_WHITELIST='["border", "thumbnail"]'
    ACCESS_CONTROL_KEYS='{"christer": "private key"}'
    ACCESS_TOKEN_GENERATORS='{"accessToken": "sha256", "token": "sha256"}'

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- List and mapping values are read as JSON.
- An unknown AUTHENTICATION_PROTOCOL raises ValidationError at startup.
- An unknown ACCESS_TOKEN_GENERATORS algorithm raises ConfigurationError at startup.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["DatabaseBackend", "Settings", "get_settings"]

from enum import StrEnum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mediavault.enums import AuthProtocol


class DatabaseBackend(StrEnum):
    SQL = "sql"
    MEMORY = "memory"


class Settings(BaseSettings):
    APP_NAME: str = "mediavault"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Persistence
    DATABASE_BACKEND: DatabaseBackend = DatabaseBackend.SQL
    DATABASE_URL: str = "postgresql+asyncpg://mediavault:mediavault@db:5432/mediavault"
    REDIS_URL: str = "redis://redis:6379/0"

    # Access tokens
    AUTHENTICATION_PROTOCOL: AuthProtocol = AuthProtocol.INCOMING
    ACCESS_TOKEN_ARGUMENT_KEYS: list[str] = Field(default_factory=lambda: ["accessToken"])
    # argument key -> algorithm, e.g. {"accessToken": "sha256", "token": "sha256"}
    ACCESS_TOKEN_GENERATORS: dict[str, str] = Field(default_factory=dict)
    ACCESS_CONTROL_KEYS: dict[str, str] = Field(default_factory=dict)

    # Transformations that may be requested without an access token
    TRANSFORMATIONS_WHITELIST: list[str] = Field(default_factory=list)
    TRANSFORMATIONS_BLACKLIST: list[str] = Field(default_factory=list)

    # Only these peers may set X-Forwarded-Proto / X-Forwarded-Host
    TRUSTED_PROXIES: list[str] = Field(default_factory=list)

    # Short URLs
    SHORT_URL_ID_LENGTH: int = 7
    SHORT_URL_CACHE_TTL_SECONDS: int = 3600

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )


@lru_cache()
def get_settings() -> Settings:
    return Settings()
