"""Credential hashing and bearer tokens.

Passwords, recovery codes and group passwords are bcrypt hashes. Tokens are
HS256 JWTs carrying ``sub`` (user id) and ``is_temp``.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
from fastapi import Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from geochat import config
from geochat.errors import Unauthorized

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

_bearer = HTTPBearer(auto_error=False)


def hash_secret(secret: str) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_secret(secret: str, hashed: str) -> bool:
    """False on mismatch or on a malformed stored hash."""
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Malformed bcrypt hash encountered")
        return False


def new_recovery_code() -> str:
    """One-time password reset code, shown to the user once; only its hash is stored."""
    return secrets.token_urlsafe(18)


def issue_token(user_id: str, temporary: bool = False) -> Tuple[str, int]:
    """Return (token, expires_at unix seconds)."""
    now = datetime.now(timezone.utc)
    lifetime = config.TEMP_TOKEN_EXPIRATION_SECS if temporary else config.JWT_EXPIRATION_SECS
    expires = now + timedelta(seconds=lifetime)
    payload = {
        "sub": user_id,
        "is_temp": temporary,
        "iat": now,
        "exp": expires,
    }
    token = jwt.encode(payload, config.JWT_SECRET, algorithm=JWT_ALGORITHM)
    return token, int(expires.timestamp())


def verify_token(token: str) -> str:
    """Decode a bearer token → user_id. Unauthorized when expired or invalid."""
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid token")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Invalid token")
    return user_id


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(_bearer),
) -> str:
    """FastAPI dependency: Authorization: Bearer <jwt> → user_id."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Missing bearer token")
    return verify_token(credentials.credentials)
