"""Password hashing and JWT helpers."""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import Any, Union

import bcrypt
import jwt

from app.core.config import settings

ALGORITHM = settings.ALGORITHM

# bcrypt only looks at the first 72 bytes of a secret
BCRYPT_MAX_PASSWORD_LENGTH = 72


def _prepare(password: str) -> bytes:
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > BCRYPT_MAX_PASSWORD_LENGTH:
        # Pre-hash long passwords so the whole secret is significant
        return hashlib.sha256(password_bytes).hexdigest().encode("ascii")
    return password_bytes


def get_password_hash(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)
    return bcrypt.hashpw(_prepare(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_prepare(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(
    subject: Union[str, Any],
    role: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Issue a signed access token.

    The subject is the user id; the role claim is informational only, the
    current role is always re-read from the database on each request.
    """
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": str(subject), "iat": now, "exp": expire}
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
