"""
Security Module - Actor extraction & permission checks

Users and sessions live in the external auth service. The ledger only
verifies its signed bearer tokens: the ``sub`` claim is the actor id and the
``permissions`` claim lists what the actor may do.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import FrozenSet, List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from dealer_ledger.core.config import settings

# Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)

WILDCARD_PERMISSION = "*"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller of a ledger operation"""
    id: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)

    def has_permissions(self, required) -> bool:
        if WILDCARD_PERMISSION in self.permissions:
            return True
        return set(required).issubset(self.permissions)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token"""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None


async def get_current_actor(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme)
) -> Actor:
    """
    Dependency that resolves the calling actor from a JWT.
    Supports both Authorization header and cookies.
    """
    token = None
    if credentials:
        token = credentials.credentials
    if not token:
        token = request.cookies.get("access_token")

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(token)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    actor_id = payload.get("sub")
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(id=str(actor_id), permissions=frozenset(payload.get("permissions") or []))


class PermissionChecker:
    """Dependency for checking actor permissions"""

    def __init__(self, required_permissions: List[str]):
        self.required_permissions = set(required_permissions)

    def __call__(self, actor: Actor = Depends(get_current_actor)):
        if not actor.has_permissions(self.required_permissions):
            missing = self.required_permissions - actor.permissions
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing required permissions: {', '.join(sorted(missing))}"
            )
