"""JWT helpers for access tokens and signed local file URLs."""

from datetime import datetime, timedelta, timezone

import jwt

from musiclib.config import settings


def create_access_token(user_id: int, username: str, is_admin: bool = False) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "sub": str(user_id),
        "username": username,
        "is_admin": is_admin,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_file_token(key: str, expires_in: int) -> str:
    """Token that grants read access to a single storage key until it expires."""
    expire = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    payload = {"key": key, "exp": expire, "type": "file"}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_file_token(token: str, key: str) -> bool:
    try:
        payload = decode_token(token)
    except jwt.PyJWTError:
        return False
    return payload.get("type") == "file" and payload.get("key") == key


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
