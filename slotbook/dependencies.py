"""FastAPI dependencies."""

from typing import Annotated, Any

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from slotbook.core.exceptions import ForbiddenException, UnauthorizedException
from slotbook.core.redis_client import CacheManager, get_redis_client
from slotbook.core.security import STAFF_ROLE, decode_access_token
from slotbook.database import get_db

# Security; public endpoints accept anonymous callers
security = HTTPBearer(auto_error=False)


def get_cache_manager() -> CacheManager:
    """Cache manager over the shared Redis client."""
    return CacheManager(get_redis_client())


async def get_optional_staff(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> dict[str, Any] | None:
    """
    Decode a staff bearer token when one is sent.

    Args:
        credentials: Bearer token credentials, if any

    Returns:
        Token payload, or None for anonymous callers

    Raises:
        UnauthorizedException: A token was sent but is invalid or expired
        ForbiddenException: The token does not carry the staff role
    """
    if credentials is None:
        return None

    payload = decode_access_token(credentials.credentials)
    if payload is None or not isinstance(payload.get("sub"), str):
        raise UnauthorizedException("Could not validate credentials")

    if payload.get("role") != STAFF_ROLE:
        raise ForbiddenException("Staff access required")

    return payload


async def require_staff(
    staff: Annotated[dict[str, Any] | None, Depends(get_optional_staff)],
) -> dict[str, Any]:
    """Reject anonymous callers."""
    if staff is None:
        raise UnauthorizedException("Staff authentication required")
    return staff


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CacheManagerDep = Annotated[CacheManager, Depends(get_cache_manager)]
OptionalStaff = Annotated[dict[str, Any] | None, Depends(get_optional_staff)]
CurrentStaff = Annotated[dict[str, Any], Depends(require_staff)]
