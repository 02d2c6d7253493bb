"""
Database package initializer exposing key public interfaces for configuration
and engine/session management.
"""

from .base import Base
from .config import get_settings, Settings
from .session import (
    dispose_engine,
    get_async_session,
    get_engine,
    get_session_maker,
    session_scope,
)

# Import models to ensure they are registered with SQLAlchemy metadata
# when the db package is imported.
from . import models as models  # noqa: F401

__all__ = [
    "Base",
    "Settings",
    "get_settings",
    "get_engine",
    "get_session_maker",
    "get_async_session",
    "dispose_engine",
    "session_scope",
    "models",
]
