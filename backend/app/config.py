from __future__ import annotations

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Fail fast if production is running with insecure defaults."""
        if self.app_env != "development":
            if self.jwt_secret_key == "change-me-in-production":
                raise ValueError(
                    "JWT_SECRET_KEY must be changed from default in non-development environments"
                )
        if self.app_env == "production" and self.rate_limit_admin_enabled:
            raise ValueError("RATE_LIMIT_ADMIN_ENABLED must not be set in production")
        return self

    # Auth
    jwt_secret_key: str = "change-me-in-production"
    jwt_access_token_expire_minutes: int = 15

    # Rate limit storage
    rate_limit_database_url: str = "sqlite:///./data/rate_limits.db"
    rate_limit_namespace: str = "fuelmeter"
    rate_limit_admin_enabled: Optional[bool] = None

    # Rate limit policies
    login_max_attempts: int = Field(5, ge=1)
    login_window_minutes: float = Field(15, gt=0)
    login_lockout_minutes: float = Field(30, gt=0)

    forgot_password_max_attempts: int = Field(3, ge=1)
    forgot_password_window_minutes: float = Field(15, gt=0)
    forgot_password_lockout_minutes: float = Field(30, gt=0)

    resend_verification_max_attempts: int = Field(5, ge=1)
    resend_verification_window_minutes: float = Field(10, gt=0)
    resend_verification_lockout_minutes: float = Field(20, gt=0)

    # App
    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000"

    @property
    def admin_interface_enabled(self) -> bool:
        if self.rate_limit_admin_enabled is None:
            return self.app_env == "development"
        return self.rate_limit_admin_enabled


settings = Settings()
