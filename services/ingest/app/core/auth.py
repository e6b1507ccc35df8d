"""
Operator JWT utilities.

Partner webhooks authenticate with HMAC signatures (see ``core.signatures``);
these tokens only guard operator routes such as diagnostics.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from .config import get_settings
from .logging import get_logger

logger = get_logger(__name__)


def create_access_token(
    data: dict[str, Any], expires_delta: timedelta | None = None
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload to encode in the token (should include 'sub')
        expires_delta: Optional custom expiration time, defaults to settings value

    Returns:
        Encoded JWT token string

    Example:
        token = create_access_token({"sub": "oncall@example.com"})
    """
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(
            minutes=settings.jwt_access_token_expire_minutes
        )

    to_encode.update({"exp": expire, "iat": datetime.now(UTC)})

    encoded_jwt = jwt.encode(
        to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm
    )

    logger.info(
        "auth.token_created", sub=data.get("sub"), expires_at=expire.isoformat()
    )
    return encoded_jwt


def decode_token(token: str) -> dict[str, Any]:
    """
    Decode and verify a JWT token.

    Raises:
        JWTError: If token is invalid or expired
    """
    settings = get_settings()
    if not settings.jwt_secret_key:
        raise JWTError("JWT secret is not configured")

    try:
        return jwt.decode(
            token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm]
        )
    except JWTError as e:
        logger.warning("auth.token_decode_failed", error=str(e))
        raise


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify a JWT token and return the payload.

    Raises:
        JWTError: If token is invalid, expired, or missing required fields
    """
    try:
        payload = decode_token(token)

        subject: str = payload.get("sub")
        if subject is None:
            logger.warning("auth.token_missing_subject")
            raise JWTError("Token missing 'sub' claim")

        logger.debug("auth.token_verified", sub=subject)
        return payload

    except JWTError as e:
        logger.warning("auth.token_verification_failed", error=str(e))
        raise
