"""
Placement Guard - Authentication Utilities
JWT decoding into a principal, and auth dependencies.

Token issuance belongs to the identity service; create_access_token is
kept for scripts and tests.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import Settings
from .dependencies import get_settings

ACCESS_TOKEN_EXPIRE_HOURS = 24

ROLES = ("employer", "candidate", "admin")

# Bearer token security
security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""
    id: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def create_access_token(
    principal_id: str,
    role: str,
    settings: Optional[Settings] = None,
    expires_in: timedelta = timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
) -> str:
    """Create a JWT access token with role claim."""
    settings = settings or Settings()
    expire = datetime.now(timezone.utc) + expires_in
    to_encode = {
        "sub": principal_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str, settings: Settings) -> Optional[dict]:
    """Decode and validate a JWT token. Expired or tampered tokens yield None."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Dependency to get the current authenticated principal.
    Validates the JWT; the principal id and role come from its claims.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials, settings)
    if payload is None:
        raise credentials_exception

    principal_id = payload.get("sub")
    role = payload.get("role")
    if principal_id is None or role not in ROLES:
        raise credentials_exception

    return Principal(id=principal_id, role=role)


def require_role(*roles: str):
    """Dependency factory restricting a route to the given roles."""

    async def checker(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(r.title() for r in roles)} access required",
            )
        return principal

    return checker


require_employer = require_role("employer")
require_candidate = require_role("candidate")


async def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    if not principal.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return principal
