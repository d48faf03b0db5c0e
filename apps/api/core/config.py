"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class ConfigurationError(RuntimeError):
    """Raised when a handler needs a setting that is not configured."""


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    DATABASE_URL: str = Field(default="sqlite:///./data/journal.db")
    DATABASE_ECHO: bool = Field(default=False)

    # Ingest / read endpoints. Unset means the endpoints are open.
    API_KEY: Optional[str] = Field(default=None)

    # Session JWT verification key (sessions are issued elsewhere)
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )

    # Strava API Configuration
    STRAVA_CLIENT_ID: Optional[str] = Field(default=None)
    STRAVA_CLIENT_SECRET: Optional[str] = Field(default=None)
    STRAVA_REDIRECT_URI: Optional[str] = Field(default=None)
    STRAVA_API_BASE: str = Field(default="https://www.strava.com/api/v3")
    STRAVA_OAUTH_BASE: str = Field(default="https://www.strava.com/oauth")
    STRAVA_SCOPE: str = Field(default="read,activity:read")

    # Strava token + sync behaviour
    STRAVA_TOKEN_REFRESH_BUFFER_S: int = Field(default=300)
    STRAVA_PAGE_SIZE: int = Field(default=50, ge=1, le=200)
    STRAVA_MAX_ACTIVITIES: int = Field(default=200, ge=1)
    STRAVA_INITIAL_SYNC_DAYS: int = Field(default=30, ge=1)

    # Web app base URL (OAuth outcomes redirect back here)
    APP_BASE_URL: str = Field(default="https://hybrid-house-journal.tech")

    # Token Encryption
    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(default=None)

    # Redis (optional; enables the cross-process token refresh lock)
    REDIS_URL: Optional[str] = Field(default=None)

    # External API Configuration
    EXTERNAL_API_TIMEOUT: int = Field(default=30)

    # Wearable sub-query timeout (seconds, per steps/calories/hr/sleep query)
    HEALTH_SUBQUERY_TIMEOUT_S: float = Field(default=10.0)

    # Lift progress: RPE view needs at least this many entries carrying RPE
    RPE_MIN_ENTRIES: int = Field(default=3, ge=1)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    CORS_ORIGINS: Optional[str] = Field(default=None)


def require_strava_config(s: "Settings") -> tuple[str, str, str]:
    """Return (client_id, client_secret, redirect_uri) or raise ConfigurationError."""
    missing = [
        name
        for name in ("STRAVA_CLIENT_ID", "STRAVA_CLIENT_SECRET", "STRAVA_REDIRECT_URI")
        if not getattr(s, name)
    ]
    if missing:
        raise ConfigurationError(f"Missing Strava configuration: {', '.join(missing)}")
    return s.STRAVA_CLIENT_ID, s.STRAVA_CLIENT_SECRET, s.STRAVA_REDIRECT_URI


# Global settings instance
settings = Settings()
