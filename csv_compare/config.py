"""
Configuration for the csv-compare service.

Values come from environment variables (or a local .env file) and are
validated once at startup.
"""

from functools import lru_cache
from typing import List
import logging

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

MIB = 1024 * 1024


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Include exception details in 500 responses"
    )

    # ==================== LOGGING ====================
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )
    LOG_JSON: bool = Field(
        default=False,
        description="Emit one JSON object per log line"
    )

    # ==================== LIMITS ====================
    MAX_UPLOAD_BYTES: int = Field(
        default=10 * MIB,
        gt=0,
        description="Maximum size of a single uploaded file"
    )
    MAX_REQUEST_BYTES: int = Field(
        default=50 * MIB,
        gt=0,
        description="Maximum size of a whole request body"
    )
    PREVIEW_ROWS: int = Field(
        default=5,
        ge=0,
        description="Rows returned by /api/preview when the caller does not ask for a count"
    )

    # ==================== SERVER ====================
    HOST: str = Field(
        default="0.0.0.0",
        description="Interface the HTTP server binds to"
    )
    PORT: int = Field(
        default=3000,
        gt=0,
        lt=65536,
        description="Port the HTTP server listens on"
    )

    # ==================== API ====================
    CORS_ORIGINS: str = Field(
        default="*",
        description="Comma-separated list of allowed origins"
    )
    API_TITLE: str = Field(default="csv-compare")
    API_VERSION: str = Field(default="0.1.0")

    @model_validator(mode="after")
    def _upload_fits_request(self) -> "Settings":
        if self.MAX_UPLOAD_BYTES > self.MAX_REQUEST_BYTES:
            raise ValueError("MAX_UPLOAD_BYTES cannot exceed MAX_REQUEST_BYTES")
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Upload limit: {settings.MAX_UPLOAD_BYTES} bytes, request limit: {settings.MAX_REQUEST_BYTES} bytes")
    return settings
