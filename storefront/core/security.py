"""
Access token verification for the hosted auth provider.

Sessions are issued by the hosted auth provider; this service only verifies
the HS256-signed access tokens it hands to the browser and extracts the
user identity from the ``sub`` claim.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import ExpiredSignatureError, JWTError, jwt

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger
from storefront.schemas.auth import AuthenticatedUser

logger = get_logger(__name__)


class TokenError(Exception):
    """Exception raised for access token errors."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


def create_access_token(
    user_id: UUID,
    email: Optional[str] = None,
    role: str = "authenticated",
    expires_delta: Optional[timedelta] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Mint an access token shaped like the auth provider's.

    Used by local tooling and tests; production tokens come from the
    provider itself.

    Args:
        user_id: Subject of the token
        email: Optional email claim
        role: Role claim
        expires_delta: Optional custom lifetime (defaults to one hour)
        settings: Settings carrying the signing secret

    Returns:
        Encoded JWT string
    """
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    claims: Dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "iat": now,
        "exp": now + (expires_delta or timedelta(hours=1)),
    }
    if email:
        claims["email"] = email
    if settings.auth_jwt_audience:
        claims["aud"] = settings.auth_jwt_audience

    return jwt.encode(
        claims,
        settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
    )


def decode_access_token(
    token: str,
    settings: Optional[Settings] = None,
) -> AuthenticatedUser:
    """
    Decode and validate an access token.

    Args:
        token: JWT string from the Authorization header
        settings: Settings carrying the verification secret

    Returns:
        The authenticated user described by the token

    Raises:
        TokenError: If the token is empty, expired, malformed, or has no
            usable subject
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = settings or get_settings()
    options = {"verify_aud": settings.auth_jwt_audience is not None}

    try:
        payload = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options=options,
        )
    except ExpiredSignatureError as e:
        logger.warning("Access token has expired")
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning(
            "Invalid access token",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise TokenError("Invalid token", code="TOKEN_INVALID") from e

    subject = payload.get("sub")
    try:
        user_id = UUID(str(subject))
    except ValueError as e:
        logger.warning("Access token subject is not a UUID", subject=subject)
        raise TokenError("Invalid token subject", code="TOKEN_INVALID") from e

    return AuthenticatedUser(
        id=user_id,
        email=payload.get("email"),
        role=payload.get("role", "authenticated"),
    )
