"""
Bearer token handling. Tokens are issued by the organisation's identity
provider; this service only verifies them (and mints them for local tooling
and tests).
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
import structlog

from budgeting.config import settings

logger = structlog.get_logger()

_verify_key: Optional[str] = None


def _load_verify_key() -> str:
    """PEM public key when JWT_PUBLIC_KEY_PATH is set (RS256), else the shared secret."""
    global _verify_key
    if _verify_key is None:
        if settings.JWT_PUBLIC_KEY_PATH:
            with open(settings.JWT_PUBLIC_KEY_PATH, "r") as f:
                _verify_key = f.read()
        else:
            _verify_key = settings.JWT_SECRET
    return _verify_key


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    department_id: Optional[str] = None,
    expires_minutes: int = 15,
) -> str:
    """HS256 token signed with JWT_SECRET, for local tooling and tests."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
        "type": "access",
    }
    if department_id:
        claims["department_id"] = str(department_id)
    return jwt.encode(claims, settings.JWT_SECRET, algorithm="HS256")


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token. Raises JWTError on failure."""
    return jwt.decode(token, _load_verify_key(), algorithms=[settings.JWT_ALGORITHM])


def verify_access_token(token: str) -> dict:
    """Verify an access token and return its claims."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("Not an access token")
    return payload
