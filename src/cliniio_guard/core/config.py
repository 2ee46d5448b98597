"""
Configuration management for the Cliniio request guard.
"""

import logging
from typing import Optional, Literal
from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


# Development-only tenant used when no facility can be resolved
DEV_FACILITY_ID = "550e8400-e29b-41d4-a716-446655440000"


# =============================================================================
# GUARD SETTINGS
# =============================================================================

class GuardSettings(BaseSettings):
    """Settings for the PostgREST fetch guard and facility cache."""

    # Request matching
    rest_path_marker: str = ".supabase.co/rest/v1/"
    tenant_param: str = "facility_id"

    # Facility cache
    facility_cache_ttl_seconds: float = 300.0  # 5 minutes
    dev_facility_id: str = DEV_FACILITY_ID
    login_path: str = "/login"

    # Which transports install_fetch_guard() patches by default
    guard_httpx: bool = True
    guard_requests: bool = True

    class Config:
        env_prefix = "CLINIIO_GUARD_"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    app_name: str = "Cliniio Request Guard"
    version: str = "1.0.0"
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # Supabase
    supabase_url: Optional[str] = Field(None, alias="SUPABASE_URL")
    supabase_anon_key: Optional[str] = Field(None, alias="SUPABASE_ANON_KEY")
    supabase_timeout: float = Field(
        10.0,
        description="Timeout in seconds for facility lookups against Supabase"
    )

    guard: GuardSettings = Field(
        default_factory=GuardSettings,
        description="Fetch guard settings"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate_on_startup(self):
        """
        Validate configuration on startup and warn about risky settings.

        Call this from entrypoints before installing the guard.
        """
        if self.is_production and self.supabase_url is None:
            logger.warning(
                "⚠️  SUPABASE_URL is not set in production. "
                "Facility lookups will fail and guarded requests that need "
                "a facility id will raise FacilityResolutionError."
            )

        if not self.is_production and self.guard.dev_facility_id != DEV_FACILITY_ID:
            logger.info(
                f"Using custom development facility id: {self.guard.dev_facility_id}"
            )


# Global settings instance
settings = Settings()
