from __future__ import annotations

import hashlib
import hmac
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "720"))
PASSWORD_SALT = os.getenv("PASSWORD_SALT", "ops-portal-dev-salt")


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    expires_at: datetime


def hash_password(raw_password: str) -> str:
    return hashlib.sha256(f"{PASSWORD_SALT}:{raw_password}".encode()).hexdigest()


def verify_password(raw_password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    return hmac.compare_digest(hash_password(raw_password), password_hash)


def create_access_token(*, user_id: int, expires_minutes: int | None = None) -> str:
    issued = datetime.now(UTC)
    expires = issued + timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    return jwt.encode(
        {"sub": str(user_id), "iat": int(issued.timestamp()), "exp": int(expires.timestamp())},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> TokenClaims:
    """Raises ``jwt.InvalidTokenError`` for expired, forged or malformed tokens."""
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
    subject = str(decoded["sub"])
    if not subject.isdigit():
        raise jwt.InvalidTokenError("token subject is not a user id")
    return TokenClaims(user_id=int(subject), expires_at=datetime.fromtimestamp(decoded["exp"], UTC))
