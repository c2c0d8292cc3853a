from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRES_MIN = int(os.getenv("ACCESS_TOKEN_EXPIRES_MIN", "15"))
REFRESH_TOKEN_EXPIRES_MIN = int(os.getenv("REFRESH_TOKEN_EXPIRES_MIN", str(60 * 24)))
LINK_TOKEN_EXPIRES_MIN = int(os.getenv("LINK_TOKEN_EXPIRES_MIN", str(60 * 24)))

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
TOKEN_TYPE_VALIDATE = "validate"
TOKEN_TYPE_RESET = "reset"

_DEFAULT_EXPIRES = {
    TOKEN_TYPE_ACCESS: ACCESS_TOKEN_EXPIRES_MIN,
    TOKEN_TYPE_REFRESH: REFRESH_TOKEN_EXPIRES_MIN,
    TOKEN_TYPE_VALIDATE: LINK_TOKEN_EXPIRES_MIN,
    TOKEN_TYPE_RESET: LINK_TOKEN_EXPIRES_MIN,
}


def encode_token(
    *,
    user_id: int,
    email: str,
    app_id: str | None,
    token_type: str = TOKEN_TYPE_ACCESS,
    roles: list[str] | None = None,
    permissions: list[str] | None = None,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or _DEFAULT_EXPIRES[token_type])
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "email": email,
        "app_id": app_id,
        "type": token_type,
        "roles": roles or [],
        "permissions": permissions or [],
        "jti": str(uuid4()),
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    if expected_type is not None and decoded.get("type") != expected_type:
        raise ValueError(f"Invalid token type, expected {expected_type}")
    return decoded


def decode_access_token(token: str) -> dict[str, Any]:
    return decode_token(token, TOKEN_TYPE_ACCESS)
