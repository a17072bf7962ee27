"""Application configuration using Pydantic BaseSettings."""

import logging
from enum import Enum

import structlog
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UnitFailurePolicy(str, Enum):
    """What a batch does when a unit fails with a non-auth, non-quota error."""

    SKIP = "skip"
    ABORT = "abort"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database Configuration (credential store)
    database_url: str = Field(default="sqlite+aiosqlite:///./visioncore.db", alias="DATABASE_URL")
    db_pool_size: int = Field(default=20, alias="DB_POOL_SIZE")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3001, alias="PORT")

    # Credentials
    # API_KEY is the operator key. With OPERATOR_KEY_OVERRIDE enabled it authorizes
    # every call and shadows per-user keys (trusted / single-tenant deployments).
    operator_api_key: str = Field(default="", alias="API_KEY")
    operator_key_override: bool = Field(default=True, alias="OPERATOR_KEY_OVERRIDE")
    platform_gemini_key: str = Field(default="", alias="PLATFORM_GEMINI_KEY")
    server_encryption_key: str = Field(default="", alias="SERVER_ENCRYPTION_KEY")

    # Identity (bearer tokens)
    identity_token_secret: str = Field(default="", alias="IDENTITY_TOKEN_SECRET")
    identity_token_algorithm: str = Field(default="HS256", alias="IDENTITY_TOKEN_ALGORITHM")

    # Remote models
    text_model: str = Field(default="gemini-3-flash-preview", alias="TEXT_MODEL")
    image_model: str = Field(default="gemini-2.5-flash-image", alias="IMAGE_MODEL")
    pro_image_model: str = Field(default="gemini-3-pro-image-preview", alias="PRO_IMAGE_MODEL")
    video_model: str = Field(default="veo-3.1-fast-generate-preview", alias="VIDEO_MODEL")

    # Source assets
    max_asset_bytes: int = Field(default=20 * 1024 * 1024, alias="MAX_ASSET_BYTES")

    # Retry and batch pacing
    retry_max_attempts: int = Field(default=3, ge=1, alias="RETRY_MAX_ATTEMPTS")
    inter_unit_delay_seconds: float = Field(default=4.5, ge=0, alias="INTER_UNIT_DELAY_SECONDS")
    per_unit_estimate_seconds: int = Field(default=6, ge=0, alias="PER_UNIT_ESTIMATE_SECONDS")
    on_unit_failure: UnitFailurePolicy = Field(
        default=UnitFailurePolicy.SKIP, alias="ON_UNIT_FAILURE"
    )

    # Video polling
    video_poll_interval_seconds: float = Field(
        default=10.0, gt=0, alias="VIDEO_POLL_INTERVAL_SECONDS"
    )
    video_max_wait_seconds: float = Field(default=600.0, gt=0, alias="VIDEO_MAX_WAIT_SECONDS")

    # Local history cache
    history_cap: int = Field(default=10, ge=1, alias="HISTORY_CAP")
    history_dir: str = Field(default="./.visioncore", alias="HISTORY_DIR")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def operator_key(self) -> str | None:
        """Operator key when the override policy is active, None otherwise."""
        if self.operator_key_override and self.operator_api_key:
            return self.operator_api_key
        return None

    @model_validator(mode="after")
    def validate_required_config(self) -> "Settings":
        """Validate required configuration on startup.

        The encryption secret protects every stored user key, so the service refuses
        to start without a usable one. Validation is skipped in test environments.
        """
        if self.app_env in ("test", "testing"):
            return self

        missing = []

        if not self.server_encryption_key:
            missing.append("SERVER_ENCRYPTION_KEY: 32-byte secret used to encrypt user API keys")
        elif len(self.server_encryption_key.encode("utf-8")) != 32:
            missing.append("SERVER_ENCRYPTION_KEY: must be exactly 32 bytes (AES-256)")

        if not self.identity_token_secret:
            missing.append("IDENTITY_TOKEN_SECRET: secret used to verify bearer tokens")

        if missing:
            error_msg = "CRITICAL: Missing or invalid environment variables:\n\n" + "\n".join(
                f"  - {m}" for m in missing
            )
            error_msg += "\n\nPlease update your .env file and restart."
            raise ValueError(error_msg)

        return self


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability
    """
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if settings.app_env == "production":
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
