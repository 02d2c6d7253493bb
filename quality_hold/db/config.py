from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

_ASYNC_DRIVERS = {"postgresql": "postgresql+asyncpg", "sqlite": "sqlite+aiosqlite"}
_SYNC_DRIVERS = {"postgresql": "postgresql", "sqlite": "sqlite"}


class Settings(BaseSettings):
    """
    Database connection settings.

    POSTGRES_URL wins when set (any SQLAlchemy URL, including sqlite for local
    runs and tests). Otherwise the URL is assembled from POSTGRES_USER,
    POSTGRES_PASSWORD, POSTGRES_DB, POSTGRES_HOST and POSTGRES_PORT.
    """

    POSTGRES_URL: Optional[str] = Field(default=None, description="Full database URL")
    POSTGRES_USER: Optional[str] = Field(default=None)
    POSTGRES_PASSWORD: Optional[str] = Field(default=None)
    POSTGRES_DB: Optional[str] = Field(default=None)
    POSTGRES_HOST: str = Field(default="localhost")
    POSTGRES_PORT: int = Field(default=5432)

    SQL_ECHO: bool = Field(default=False, description="Log every SQL statement")
    DB_POOL_SIZE: int = Field(default=5, ge=1, description="Connection pool size (PostgreSQL)")
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0, description="Extra connections above the pool size")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def url(self) -> URL:
        if self.POSTGRES_URL:
            return make_url(self.POSTGRES_URL)
        if not (self.POSTGRES_USER and self.POSTGRES_PASSWORD and self.POSTGRES_DB):
            raise ValueError(
                "Database configuration missing: set POSTGRES_URL or "
                "POSTGRES_USER, POSTGRES_PASSWORD and POSTGRES_DB."
            )
        return URL.create(
            "postgresql",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_HOST,
            port=self.POSTGRES_PORT,
            database=self.POSTGRES_DB,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite"

    def _with_driver(self, drivers: dict) -> str:
        url = self.url
        driver = drivers.get(url.get_backend_name())
        if driver is not None:
            url = url.set(drivername=driver)
        return url.render_as_string(hide_password=False)

    @property
    def async_database_url(self) -> str:
        """URL with the async driver (asyncpg / aiosqlite) used by the AsyncEngine."""
        return self._with_driver(_ASYNC_DRIVERS)

    @property
    def sync_database_url(self) -> str:
        """URL with the default sync driver, for Alembic offline mode."""
        return self._with_driver(_SYNC_DRIVERS)


# PUBLIC_INTERFACE
def get_settings() -> Settings:
    """Fresh settings read from the environment."""
    return Settings()
