from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(v, default: List[str]) -> List[str]:
    if v is None:
        return default
    if isinstance(v, str):
        parts = [p.strip() for p in v.split(",") if p.strip()]
        return parts or default
    if isinstance(v, list):
        return v or default
    return default


class AppSettings(BaseSettings):
    """
    Application-level settings for the FastAPI service.

    This is separate from quality_hold.db.config.Settings, which focuses on the database layer.
    """

    # FastAPI metadata
    APP_NAME: str = Field(default="Quality Hold API")
    APP_DESCRIPTION: str = Field(
        default=(
            "Quality incident and shipment hold workflow: incident intake, nine-point "
            "sampling, supervisory review and supplier delivery scorecards."
        )
    )
    APP_VERSION: str = Field(default="0.1.0")

    # CORS
    CORS_ORIGINS: List[str] = Field(
        default_factory=lambda: ["*"],
        description="Comma-separated list or JSON array of allowed origins. Default: *",
    )
    CORS_ALLOW_CREDENTIALS: bool = Field(default=True)
    CORS_ALLOW_METHODS: List[str] = Field(default_factory=lambda: ["*"])
    CORS_ALLOW_HEADERS: List[str] = Field(default_factory=lambda: ["*"])

    # Token verification (tokens are issued by the identity service)
    JWT_SECRET_KEY: str = Field(default="change-me", description="HMAC secret shared with the identity service")
    JWT_ALGORITHM: str = Field(default="HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60)

    # Authorization
    REVIEWER_ROLES: List[str] = Field(
        default_factory=lambda: ["admin", "exec", "supervisor", "branch_manager", "inventory"],
        description="Roles allowed to issue review actions on quality incidents.",
    )
    HQ_ROLES: List[str] = Field(
        default_factory=lambda: ["admin", "exec"],
        description="Roles that see incidents across all branches.",
    )

    # Media storage
    QUALITY_MEDIA_PATH: str = Field(default="storage/quality-media")
    QUALITY_MEDIA_URL_PREFIX: str = Field(default="/uploads/quality")
    MEDIA_MAX_BYTES: int = Field(default=50 * 1024 * 1024, description="Max upload size (videos included)")

    # Startup behavior
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(
        default=True,
        description="If true, run Alembic migrations (upgrade head) at app startup.",
    )
    AUTO_SEED: bool = Field(
        default=False,
        description="If true, seed a demo supplier and shipment after migrations.",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Root log level (DEBUG, INFO, WARNING, ...)")

    ENVIRONMENT: Optional[str] = Field(
        default=None, description="Environment label (dev/test/prod)"
    )

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors_origins(cls, v):
        """
        Accept both JSON array format and comma-separated formats for CORS origins.
        """
        return _split_csv(v, ["*"])

    @field_validator("REVIEWER_ROLES", "HQ_ROLES", mode="before")
    @classmethod
    def _parse_roles(cls, v):
        return [r.lower() for r in _split_csv(v, [])]


# PUBLIC_INTERFACE
def get_app_settings() -> AppSettings:
    """
    Return a new AppSettings instance populated from environment variables.
    """
    return AppSettings()
