"""Application settings and configuration."""

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_SECRET_DEFAULTS = {"change-me-in-production", "secret", "your_identity_secret_here_at_least_32_characters"}


class Settings(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="HOMESERVE_",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "homeserve"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console or json
    allowed_origins: str = "http://localhost:4000"
    public_base_url: str = "http://localhost:4000"

    # Database
    database_url: str = "sqlite:///./homeserve.db"

    # Identity provider tokens
    identity_jwt_secret: str = "change-me-in-production"
    identity_jwt_algorithm: str = "HS256"
    identity_jwt_audience: str | None = None

    # Fingerprinting
    ip_lookup_url: str = "https://ipapi.co/json/"
    ip_lookup_timeout_seconds: float = 5.0
    trust_forwarded_for: bool = False  # Only enable behind a trusted proxy

    # Settlement
    settlement_max_attempts: int = Field(default=5, ge=1, le=25)
    settlement_isolation_level: str | None = None  # e.g. SERIALIZABLE on PostgreSQL

    # Referral capture cookie
    referral_cookie_name: str = "referral_code"
    referral_cookie_max_age_days: int = 30

    # Profiles
    default_phone_region: str = "IN"


# Global settings instance
settings = Settings()

# ── Security validation ──────────────────────────────────────────────
if settings.env == "production":
    if settings.identity_jwt_secret in _INSECURE_SECRET_DEFAULTS or len(settings.identity_jwt_secret) < 32:
        print(
            "\n❌  FATAL: HOMESERVE_IDENTITY_JWT_SECRET is insecure or too short (min 32 chars).\n"
            "   Use the signing secret shared with the identity provider.\n",
            file=sys.stderr,
        )
        sys.exit(1)
