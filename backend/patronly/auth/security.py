"""Identity provider token handling.

Users authenticate with an external identity provider that issues HS256 JWTs
signed with a shared secret. This module only verifies those tokens and turns
them into an explicit, request-scoped Identity.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from patronly.config import settings

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Identity:
    """Authenticated caller for one request."""
    user_id: str
    email: str
    role: str = "user"
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token the way the identity provider does (tests and local tooling)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode["exp"] = expire
    if settings.JWT_AUDIENCE and "aud" not in to_encode:
        to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the verified claims, or None for an invalid or expired token."""
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE or None,
            options={"verify_aud": bool(settings.JWT_AUDIENCE)},
        )
    except jwt.PyJWTError:
        return None


def identity_from_claims(payload: Dict[str, Any]) -> Optional[Identity]:
    """Map token claims to an Identity. Supabase keeps the app role in app_metadata."""
    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id.strip():
        return None

    app_metadata = payload.get("app_metadata") or {}
    user_metadata = payload.get("user_metadata") or {}
    role = app_metadata.get("role") or payload.get("role") or "user"
    # "authenticated" is the provider's generic role, not an application role
    if role == "authenticated":
        role = "user"

    return Identity(
        user_id=user_id,
        email=payload.get("email") or "",
        role=role,
        name=user_metadata.get("full_name") or payload.get("name"),
    )
