from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from quality_hold.core.settings import get_app_settings


@dataclass(frozen=True)
class Actor:
    """Already-authenticated caller, as resolved from the bearer token."""
    user_id: str
    role: str
    branch_ids: frozenset[UUID] = field(default_factory=frozenset)

    def has_role(self, roles) -> bool:
        return self.role.lower() in {r.lower() for r in roles}


# PUBLIC_INTERFACE
def create_access_token(
    subject: str,
    role: str,
    branch_ids: list[str] | None = None,
    expires_minutes: Optional[int] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> str:
    """Create a signed access token carrying subject (user id), role and branch scope."""
    settings = get_app_settings()
    now = datetime.now(tz=timezone.utc)
    exp = now + timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    payload: Dict[str, Any] = {
        "sub": subject,
        "role": role,
        "branch_ids": branch_ids or [],
        "exp": exp,
        "iat": now,
        "type": "access",
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# PUBLIC_INTERFACE
def decode_token(token: str) -> Dict[str, Any]:
    """Decode and validate a JWT; raises JWTError if invalid/expired."""
    settings = get_app_settings()
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


# PUBLIC_INTERFACE
def actor_from_token(token: str) -> Actor:
    """
    Build an Actor from a bearer token.

    Raises:
        JWTError: token invalid, expired or missing the subject/role claims.
    """
    payload = decode_token(token)
    sub = payload.get("sub")
    role = payload.get("role")
    if not sub or not role:
        raise JWTError("Token is missing 'sub' or 'role'")
    try:
        branches = frozenset(UUID(str(b)) for b in payload.get("branch_ids") or [])
    except ValueError as exc:
        raise JWTError("Token carries an invalid branch id") from exc
    return Actor(user_id=str(sub), role=str(role).lower(), branch_ids=branches)
