"""
JWT access tokens and password hashing for the user API.

Flow:
1. The user registers or logs in with login + password
2. The password is checked against a PBKDF2 hash stored on the user row
3. An access token carrying user_id and login is returned
4. Protected routes decode the token on every request (stateless)
"""
import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_HASH_SCHEME = "pbkdf2_sha256"
_SALT_BYTES = 16


class TokenPayload(BaseModel):
    """JWT claims"""
    user_id: int
    login: str
    exp: int  # Unix timestamp, JWT standard


def create_access_token(user_id: int, login: str) -> str:
    """Issue a signed access token"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not set, cannot issue tokens")
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "user_id": user_id,
        "login": login,
        "exp": int(expire.timestamp()),
    }
    encoded = pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    logger.info("JWT token created", extra_data={"user_id": user_id})
    return encoded


def verify_token(token: str) -> Optional[TokenPayload]:
    """Decode a token, None if invalid or expired"""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty, tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None


def hash_password(password: str, iterations: int | None = None) -> str:
    """
    Hash a password as ``pbkdf2_sha256$<iterations>$<salt>$<digest>``.

    Salt and digest are urlsafe base64. The iteration count is stored with
    the hash so it can be raised later without invalidating old passwords.
    """
    rounds = iterations or settings.PASSWORD_HASH_ITERATIONS
    salt = secrets.token_bytes(_SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
    return "$".join([
        _HASH_SCHEME,
        str(rounds),
        base64.urlsafe_b64encode(salt).decode("ascii"),
        base64.urlsafe_b64encode(digest).decode("ascii"),
    ])


def verify_password(password: str, password_hash: str) -> bool:
    """Constant-time check of a password against a stored hash"""
    try:
        scheme, rounds, salt_b64, digest_b64 = password_hash.split("$")
        if scheme != _HASH_SCHEME:
            return False
        salt = base64.urlsafe_b64decode(salt_b64)
        expected = base64.urlsafe_b64decode(digest_b64)
        iterations = int(rounds)
    except (ValueError, TypeError) as e:
        logger.warning("Stored password hash malformed", extra_data={"error": str(e)})
        return False

    actual = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return hmac.compare_digest(actual, expected)
