"""
Admin credentials for the HTTP layer.

Admins present an HS256 JWT whose ``sub`` is their external id. The core
never sees the token, only the resolved admin user.
"""

import time
from typing import Optional

from jose import JWTError, jwt

from .config import ADMIN_JWT_ALGORITHM, ADMIN_JWT_SECRET, ADMIN_TOKEN_TTL_SECONDS


class InvalidTokenError(Exception):
    pass


def create_admin_token(
    external_id: int,
    secret: str = ADMIN_JWT_SECRET,
    ttl_seconds: int = ADMIN_TOKEN_TTL_SECONDS,
    algorithm: str = ADMIN_JWT_ALGORITHM,
) -> str:
    now = int(time.time())
    claims = {"sub": str(external_id), "iat": now, "exp": now + ttl_seconds, "scope": "admin"}
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_admin_token(
    token: Optional[str],
    secret: str = ADMIN_JWT_SECRET,
    algorithm: str = ADMIN_JWT_ALGORITHM,
) -> int:
    """Return the external id carried by a valid admin token."""
    if not token:
        raise InvalidTokenError("Missing admin token")
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except JWTError as e:
        raise InvalidTokenError(f"Invalid admin token: {e}")

    if claims.get("scope") != "admin":
        raise InvalidTokenError("Token is not an admin token")
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError):
        raise InvalidTokenError("Token subject is not a user id")
