# SPDX-FileCopyrightText: 2025 Weibo, Inc.
#
# SPDX-License-Identifier: Apache-2.0

from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Type

from dotenv import dotenv_values
from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from pydantic_settings.sources import DotEnvSettingsSource
from pydantic_settings.sources.utils import parse_env_vars


class NoInterpolationDotEnvSettingsSource(DotEnvSettingsSource):
    """
    Custom DotEnvSettingsSource that disables variable interpolation.

    AI persona strings and provider endpoints may legitimately contain
    "${...}" sequences which dotenv would otherwise try to expand.
    """

    @staticmethod
    def _static_read_env_file(
        file_path: Path,
        *,
        encoding: str | None = None,
        case_sensitive: bool = False,
        ignore_empty: bool = False,
        parse_none_str: str | None = None,
    ) -> Mapping[str, str | None]:
        file_vars: dict[str, str | None] = dotenv_values(
            file_path, encoding=encoding or "utf8", interpolate=False
        )
        return parse_env_vars(file_vars, case_sensitive, ignore_empty, parse_none_str)


class Settings(BaseSettings):
    # Project configuration
    PROJECT_NAME: str = "Task Manager Realtime"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    ENABLE_API_DOCS: bool = True

    # Environment configuration
    ENVIRONMENT: str = "development"  # development or production

    # Database configuration
    DATABASE_URL: str = "sqlite:///./taskboard.db"
    DB_AUTO_CREATE_TABLES: bool = True

    # Redis configuration (cache, change feed, locks)
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_KEY_PREFIX: str = "taskboard:"
    CHAT_CACHE_TTL_SECONDS: int = 3600

    # CORS
    FRONTEND_URL: str = "http://localhost:3000"

    # Socket.IO configuration
    SOCKETIO_NAMESPACE: str = "/"
    SOCKETIO_PING_TIMEOUT: int = 60  # seconds
    SOCKETIO_PING_INTERVAL: int = 25  # seconds
    # Share rooms across processes through Redis pub/sub
    SOCKETIO_REDIS_MANAGER_ENABLED: bool = False

    # AI assistant configuration
    AI_ENABLED: bool = True
    AI_PROVIDER: str = "default"  # default, openai, azure
    AI_API_KEY: Optional[str] = None
    AI_API_ENDPOINT: Optional[str] = None
    AI_MODEL: str = "gpt-3.5-turbo"
    AI_AZURE_API_VERSION: str = "2023-05-15"
    AI_CONTEXT_WINDOW_SIZE: int = 10
    AI_MAX_TOKENS: int = 1000
    AI_TEMPERATURE: float = 0.7
    AI_TIMEOUT_SECONDS: float = 30.0
    AI_CACHE_TTL: int = 3600  # 1 hour in seconds
    AI_RATE_LIMIT_MAX: int = 20
    AI_RATE_LIMIT_WINDOW: int = 3600  # seconds
    AI_PERSONA: str = "helpful assistant"

    # Circuit breaker configuration (AI provider calls)
    CIRCUIT_BREAKER_FAIL_MAX: int = 5
    CIRCUIT_BREAKER_RESET_TIMEOUT: int = 60

    # Change feed configuration
    CHANGE_FEED_ENABLED: bool = True
    CHANGE_FEED_RETRY_DELAY_SECONDS: float = 5.0
    CHANGE_FEED_CHANNEL_PREFIX: str = "taskboard:changes:"
    # Minimum Redis major version that supports the pub/sub change feed
    CHANGE_FEED_MIN_REDIS_VERSION: int = 5

    # Scheduler configuration
    SCHEDULER_ENABLED: bool = True
    DEADLINE_SWEEP_INTERVAL_SECONDS: int = 300  # 5 minutes
    DEADLINE_SWEEP_WINDOW_MINUTES: int = 60
    DUE_DATE_CHECK_INTERVAL_SECONDS: int = 3600  # hourly
    DUE_DATE_HORIZON_DAYS: int = 2
    DUE_DATE_DEDUP_HOURS: int = 12

    # Telemetry
    OTEL_ENABLED: bool = False

    @field_validator("AI_API_KEY", "AI_API_ENDPOINT", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: Any) -> Optional[str]:
        """Treat empty strings from .env as unset."""
        if v == "":
            return None
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """
        Customize settings sources to use NoInterpolationDotEnvSettingsSource.
        """
        return (
            init_settings,
            env_settings,
            NoInterpolationDotEnvSettingsSource(settings_cls),
            file_secret_settings,
        )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


# Global configuration instance
settings = Settings()
