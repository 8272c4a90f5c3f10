"""Security utilities: JWT tokens and PIN hashing."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from jwt.exceptions import PyJWTError

from restopos.core.config import settings

logger = logging.getLogger(__name__)


def verify_pin(plain_pin: str, hashed_pin: str) -> bool:
    """Verify a plain PIN against a hash.

    Uses bcrypt's built-in timing-safe comparison.
    """
    try:
        return bcrypt.checkpw(
            plain_pin.encode("utf-8"),
            hashed_pin.encode("utf-8"),
        )
    except ValueError as e:
        logger.warning(f"PIN verification error: {e}")
        return False


def get_pin_hash(pin: str) -> str:
    """Hash a PIN code using bcrypt."""
    return bcrypt.hashpw(
        pin.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with a unique JTI."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    to_encode.update({
        "exp": now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
        "iat": now,
        "jti": secrets.token_hex(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def create_staff_token(staff_id: int, role: str, name: str) -> str:
    """Token for a logged-in staff member; ``role`` is the StaffRole value."""
    return create_access_token(data={"sub": str(staff_id), "role": role, "name": name})


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Decode and validate a JWT access token. Returns None when invalid.

    Tokens without ``sub`` or ``exp`` are rejected outright.
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require": ["exp", "sub"]},
        )
    except PyJWTError as e:
        logger.debug(f"Token decode failed: {e}")
        return None
