"""Staff bearer tokens."""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from slotbook.config import settings

STAFF_ROLE = "staff"
TOKEN_TYPE = "access"


def create_staff_token(
    staff_id: str,
    expires_delta: timedelta | None = None,
    role: str = STAFF_ROLE,
) -> str:
    """
    Issue a signed token for a staff member.

    Tokens are minted out of band (an admin script or the test suite); the
    API itself only verifies them.

    Args:
        staff_id: Subject identifier
        expires_delta: Lifetime, defaults to ACCESS_TOKEN_EXPIRE_MINUTES
        role: Role claim checked by staff-only endpoints

    Returns:
        Encoded JWT
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": staff_id,
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Verified claims, or None for a bad signature, an expired token or another token type."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    return claims if claims.get("type") == TOKEN_TYPE else None
