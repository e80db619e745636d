"""Application settings and configuration.

This module defines all configuration options for the FarmLink core.
Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="FarmLink", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Remote store (reference SQL gateway) and on-device local store
    database_url: str = Field(default="sqlite:///./farmlink.db", alias="DATABASE_URL")
    local_store_url: str = Field(
        default="sqlite:///./farmlink_local.db",
        alias="LOCAL_STORE_URL",
    )
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Languages
    canonical_language: str = Field(default="en", alias="CANONICAL_LANGUAGE")
    default_language: str = Field(default="en", alias="DEFAULT_LANGUAGE")

    # Order lifecycle
    order_advance_interval_seconds: float = Field(
        default=10.0,
        alias="ORDER_ADVANCE_INTERVAL_SECONDS",
    )
    order_auto_advance_enabled: bool = Field(
        default=False,
        alias="ORDER_AUTO_ADVANCE_ENABLED",
    )

    # Negotiation chat
    silence_timeout_seconds: float = Field(default=6.0, alias="SILENCE_TIMEOUT_SECONDS")
    offline_queue_max: int = Field(default=200, alias="OFFLINE_QUEUE_MAX")
    remote_timeout_seconds: float = Field(default=10.0, alias="REMOTE_TIMEOUT_SECONDS")
    message_preview_length: int = Field(default=50, alias="MESSAGE_PREVIEW_LENGTH")
    conversation_opening_preview: str = Field(
        default="Conversation started",
        alias="CONVERSATION_OPENING_PREVIEW",
    )

    # Translation gateway
    translate_base_url: str = Field(
        default="https://translate.googleapis.com",
        alias="TRANSLATE_BASE_URL",
    )
    translate_timeout_seconds: float = Field(
        default=10.0,
        alias="TRANSLATE_TIMEOUT_SECONDS",
    )
    translate_failure_threshold: int = Field(
        default=5,
        alias="TRANSLATE_FAILURE_THRESHOLD",
    )
    translate_recovery_seconds: float = Field(
        default=60.0,
        alias="TRANSLATE_RECOVERY_SECONDS",
    )

    # CORS configuration for the UI layer
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


settings = Settings()
