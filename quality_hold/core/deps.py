from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from quality_hold.core.logging import user_id_var
from quality_hold.core.security import Actor, actor_from_token
from quality_hold.core.settings import AppSettings, get_app_settings
from quality_hold.core.storage import LocalMediaStorage, MediaStorage
from quality_hold.db.session import get_async_session

logger = logging.getLogger(__name__)

# Tokens are issued by the identity service; the path is only used by the docs UI.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


# PUBLIC_INTERFACE
async def get_session(
    session: AsyncSession = Depends(get_async_session),
) -> AsyncSession:
    """Request-scoped AsyncSession; closed by get_async_session after the response."""
    return session


# PUBLIC_INTERFACE
async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    """
    Resolve the authenticated actor {user_id, role, branch_ids} from the bearer token.

    Raises:
        HTTPException: 401 if the token is invalid or incomplete.
    """
    try:
        actor = actor_from_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user_id_var.set(actor.user_id)
    return actor


# PUBLIC_INTERFACE
def require_roles(*required: str):
    """
    Create a dependency that requires the current actor to hold one of the specified roles.
    """

    async def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        if not actor.has_role(required):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return actor

    return _dep


# PUBLIC_INTERFACE
def get_settings_dep() -> AppSettings:
    """Application settings as a dependency (overridable in tests)."""
    return get_app_settings()


# PUBLIC_INTERFACE
def get_media_storage(settings: AppSettings = Depends(get_settings_dep)) -> MediaStorage:
    """Media storage backend for evidentiary uploads."""
    return LocalMediaStorage(settings.QUALITY_MEDIA_PATH, settings.QUALITY_MEDIA_URL_PREFIX)
