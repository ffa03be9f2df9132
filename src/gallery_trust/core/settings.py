"""Application settings and configuration.

This module defines all configuration options for the gallery trust-and-safety
service. Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="Gallery Trust", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Security and authentication (tokens are issued by the identity service)
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(
        default=60 * 24 * 7,
        alias="ACCESS_TOKEN_EXPIRE_MINUTES",
    )
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./gallery_trust.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Rate limiting
    rate_limit_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="RATE_LIMIT_BACKEND",
    )
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    rate_limit_sweep_every: int = Field(default=100, alias="RATE_LIMIT_SWEEP_EVERY")
    rate_limit_redis_retry_seconds: float = Field(
        default=30.0,
        alias="RATE_LIMIT_REDIS_RETRY_SECONDS",
    )
    rate_limit_general_max: int = Field(default=100, alias="RATE_LIMIT_GENERAL_MAX")
    rate_limit_general_window: int = Field(default=60, alias="RATE_LIMIT_GENERAL_WINDOW")
    rate_limit_public_max: int = Field(default=200, alias="RATE_LIMIT_PUBLIC_MAX")
    rate_limit_public_window: int = Field(default=60, alias="RATE_LIMIT_PUBLIC_WINDOW")
    rate_limit_auth_max: int = Field(default=5, alias="RATE_LIMIT_AUTH_MAX")
    rate_limit_auth_window: int = Field(default=60, alias="RATE_LIMIT_AUTH_WINDOW")
    rate_limit_upload_max: int = Field(default=10, alias="RATE_LIMIT_UPLOAD_MAX")
    rate_limit_upload_window: int = Field(default=3600, alias="RATE_LIMIT_UPLOAD_WINDOW")
    rate_limit_message_max: int = Field(default=10, alias="RATE_LIMIT_MESSAGE_MAX")
    rate_limit_message_window: int = Field(default=3600, alias="RATE_LIMIT_MESSAGE_WINDOW")

    # Abuse heuristics
    rapid_upload_threshold: int = Field(default=5, alias="RAPID_UPLOAD_THRESHOLD")
    rapid_upload_window_seconds: int = Field(default=60, alias="RAPID_UPLOAD_WINDOW_SECONDS")
    bulk_gallery_threshold: int = Field(default=10, alias="BULK_GALLERY_THRESHOLD")
    bulk_gallery_window_seconds: int = Field(
        default=3600,
        alias="BULK_GALLERY_WINDOW_SECONDS",
    )
    login_ip_history_size: int = Field(default=10, alias="LOGIN_IP_HISTORY_SIZE")
    failed_login_threshold: int = Field(default=5, alias="FAILED_LOGIN_THRESHOLD")
    failed_login_window_seconds: int = Field(
        default=900,
        alias="FAILED_LOGIN_WINDOW_SECONDS",
    )
    flag_dedup_window_seconds: int = Field(default=3600, alias="FLAG_DEDUP_WINDOW_SECONDS")

    # New account throttle
    new_account_days: int = Field(default=7, alias="NEW_ACCOUNT_DAYS")
    new_account_upload_limit: int = Field(default=10, alias="NEW_ACCOUNT_UPLOAD_LIMIT")

    # Message moderation
    tone_review_threshold: float = Field(default=0.7, alias="TONE_REVIEW_THRESHOLD")
    review_text_max_length: int = Field(default=1000, alias="REVIEW_TEXT_MAX_LENGTH")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["*"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def rate_limit_tiers(self) -> dict[str, tuple[int, int]]:
        """Return ``(max_requests, window_seconds)`` per tier name."""
        return {
            "GENERAL": (self.rate_limit_general_max, self.rate_limit_general_window),
            "PUBLIC": (self.rate_limit_public_max, self.rate_limit_public_window),
            "AUTH": (self.rate_limit_auth_max, self.rate_limit_auth_window),
            "UPLOAD": (self.rate_limit_upload_max, self.rate_limit_upload_window),
            "MESSAGE": (self.rate_limit_message_max, self.rate_limit_message_window),
        }


settings = Settings()  # type: ignore[call-arg]
