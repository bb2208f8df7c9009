"""FastAPI dependencies for authentication and authorization."""
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from patronly.auth.security import Identity, decode_token, identity_from_claims

security = HTTPBearer(auto_error=False)


async def get_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Identity:
    """
    FastAPI dependency to extract the caller's identity from the JWT Bearer token.
    Raises HTTPException if the token is missing or invalid.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    identity = identity_from_claims(payload)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return identity


async def admin_required(identity: Identity = Depends(get_identity)) -> Identity:
    """
    FastAPI dependency to ensure the caller has the admin role.
    Raises HTTPException if role is not "admin".
    """
    if not identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return identity
