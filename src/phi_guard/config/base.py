"""Base configuration settings."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Note: ``phi_encryption_key`` is key material. It is read from the
    environment only and must never be logged or echoed back.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "phi-guard"
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"

    # Database
    database_url: str = "sqlite:///./phi_guard.db"
    database_echo: bool = False

    # PHI encryption
    phi_encryption_key: Optional[str] = Field(
        default=None,
        description="AES-256 key as 64 hex characters - MUST be set in every environment",
    )
    ciphertext_version: int = Field(default=1, ge=1)

    # Session policy
    session_idle_timeout_minutes: int = Field(default=30, gt=0)
    session_max_lifetime_minutes: int = Field(default=240, gt=0)
    session_absolute_ceiling_minutes: int = Field(default=480, gt=0)
    session_reauth_after_minutes: int = Field(default=240, gt=0)
    max_concurrent_sessions: int = Field(default=3, ge=1)
    session_require_mfa: bool = False
    session_location_tracking: bool = False

    # Access policy
    max_roles_per_user: int = Field(default=25, ge=1)
    practice_timezone: str = "UTC"

    @field_validator("phi_encryption_key")
    @classmethod
    def strip_encryption_key(cls, v: Optional[str]) -> Optional[str]:
        """Normalize surrounding whitespace from env files."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Only console and json renderers are supported."""
        v = v.lower()
        if v not in ("console", "json"):
            raise ValueError(f"log_format must be 'console' or 'json', got {v!r}")
        return v

    @property
    def is_production(self) -> bool:
        """Check whether running in a production-like environment."""
        return self.environment.lower() in ("production", "staging")
