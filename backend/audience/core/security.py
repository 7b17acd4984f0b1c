"""JWT helpers.

Operators authenticate against the dashboard's auth service; this API only
verifies the access tokens it issues. :func:`create_access_token` exists for
local tooling and tests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt

from audience.core.config import settings

ALGORITHM = "HS256"


def create_access_token(data: Dict[str, Any], expires: timedelta | None = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES or 15))
    to_encode = data.copy()
    to_encode.update(
        {
            "type": "access",
            "exp": expire,
            "iat": now,
            "nbf": now,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a token; raises ``jose.JWTError`` when invalid."""

    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )
