"""
JWT security utilities.

Handles access token creation and verification.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

from jose import JWTError, jwt

from app.ai_service.config import get_settings
from app.ai_service.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity carried from the auth layer to the handlers."""

    user_id: UUID
    email: str = ""
    name: str = ""
    role: str = ""


def create_access_token(data: Dict, expires_minutes: Optional[int] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data (Dict): Payload to encode (e.g. user identifiers).
        expires_minutes (Optional[int]): Override for the configured lifetime.

    Returns:
        str: Encoded JWT token.
    """
    settings = get_settings()
    to_encode = data.copy()

    minutes = settings.JWT_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    to_encode.update({"exp": expire})

    logger.debug(
        "Creating access token",
        extra={"expires_in_minutes": minutes},
    )

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_access_token(token: str) -> Dict:
    """
    Verify and decode a JWT access token.

    Args:
        token (str): JWT token.

    Returns:
        Dict: Decoded token payload.

    Raises:
        ValueError: If token is invalid or expired.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )

        logger.debug(
            "Token successfully verified",
            extra={"subject": payload.get("sub")},
        )

        return payload

    except JWTError as exc:
        logger.warning(
            "Token verification failed",
            extra={"error": str(exc)},
        )
        raise ValueError("Invalid or expired token") from exc


def user_from_claims(claims: Dict) -> AuthenticatedUser:
    """
    Build an AuthenticatedUser from decoded claims.

    The user id is read from ``user_id`` and falls back to ``sub``.

    Raises:
        ValueError: If no claim holds a valid UUID.
    """
    raw_id = claims.get("user_id") or claims.get("sub")
    if not raw_id:
        raise ValueError("No user ID found in token claims")

    try:
        user_id = UUID(str(raw_id))
    except ValueError as exc:
        raise ValueError("Invalid user ID in token claims") from exc

    return AuthenticatedUser(
        user_id=user_id,
        email=claims.get("email") or "",
        name=claims.get("name") or "",
        role=claims.get("role") or "",
    )
