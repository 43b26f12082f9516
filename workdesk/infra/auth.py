from __future__ import annotations

import hashlib
import hmac
import os
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-jwt-secret-change-me-before-deploying")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", str(24 * 60)))
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "true").lower() in {"1", "true", "yes"}
PASSWORD_SALT = os.getenv("PASSWORD_SALT", "workdesk-dev-salt")


def create_session_token(
    *,
    user_id: str,
    expires_minutes: int | None = None,
) -> tuple[str, datetime]:
    now = datetime.now(UTC)
    expires_at = now + timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM), expires_at


def decode_session_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(
        token,
        JWT_SECRET,
        algorithms=[JWT_ALGORITHM],
        options={"require": ["sub", "jti", "exp"]},
    )
    if not isinstance(decoded, dict):
        raise jwt.InvalidTokenError("Invalid token payload")
    return decoded


def seconds_until_expiry(claims: dict[str, Any]) -> int:
    exp = claims.get("exp")
    if not isinstance(exp, int):
        return 0
    return max(0, exp - int(datetime.now(UTC).timestamp()))


def hash_password(raw_password: str) -> str:
    return hashlib.sha256(f"{PASSWORD_SALT}:{raw_password}".encode()).hexdigest()


def verify_password(raw_password: str, password_hash: str) -> bool:
    return hmac.compare_digest(hash_password(raw_password), password_hash)
