"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="qrprofile-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins",
    )

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")
    supabase_publishable_key: str = Field(
        default="",
        description="Publishable key; when set, profile writes run with the caller's token under row-level policies",
    )

    # Profiles
    profile_upsert_max_attempts: int = Field(
        default=6,
        ge=1,
        description="Upper bound on upsert attempts while excluding columns missing from the schema",
    )
    profile_disabled_columns: str = Field(
        default="",
        description="Comma-separated optional profile columns known to be absent from the deployed schema",
    )
    profile_schema_probe: bool = Field(
        default=False,
        description="Probe optional profile columns against the store at startup",
    )

    # Avatars
    avatar_bucket: str = Field(default="avatars", description="Storage bucket for avatar images")
    avatar_max_bytes: int = Field(default=5 * 1024 * 1024, description="Maximum avatar upload size in bytes")
    max_request_body_size: int = Field(
        default=6 * 1024 * 1024,
        description="Maximum accepted request body size in bytes",
    )

    # Referrals
    referral_max_attempts: int = Field(default=3, ge=1, description="Attempts for transient referral write failures")

    # Client-side save orchestration
    api_base_url: str = Field(default="http://localhost:8080", description="Base URL the client gateway talks to")
    profile_save_timeout_seconds: float = Field(default=15.0, gt=0, description="Timeout for one profile save round trip")

    # Public pages
    public_site_url: str = Field(default="", description="Base URL of the public profile pages, used in contact cards")

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def profile_disabled_columns_set(self) -> frozenset[str]:
        """Parse disabled profile columns into a set."""
        return frozenset(
            column.strip() for column in self.profile_disabled_columns.split(",") if column.strip()
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
