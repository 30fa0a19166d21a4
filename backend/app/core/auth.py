"""
ReelStage Authentication Module

Bearer-token authentication for the video API. Tokens are HS256 (or
HS384/HS512) JWTs signed with the configured secret key; the ``sub`` claim
carries the user UUID that video ownership is checked against.

Identity management itself (registration, login, refresh) lives outside this
service; ``create_access_token`` exists for scripts and tests that need to
mint a token for a known user.

Usage:
    ```python
    from fastapi import Depends
    from app.core.auth import get_current_user_id

    @router.get("/protected")
    async def protected_route(user_id: str = Depends(get_current_user_id)):
        return {"user_id": user_id}
    ```
"""

import logging
import uuid

from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from app.config import Settings, get_settings


logger = logging.getLogger(__name__)


# =============================================================================
# Security Scheme
# =============================================================================

# auto_error is off so a missing header surfaces as 401 from our own handling
bearer_scheme = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token authentication.",
    auto_error=False,
)


class AuthenticationError(Exception):
    """Raised when a bearer credential is missing or cannot be validated."""


# =============================================================================
# Token Functions
# =============================================================================


def create_access_token(
    user_id: str | uuid.UUID,
    settings: Settings,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a signed access token for ``user_id``.

    Token claims:
    - sub: User UUID (subject)
    - exp: Expiration timestamp
    - iat: Issued at timestamp

    Args:
        user_id: The user's UUID.
        settings: Settings providing the secret key, algorithm and default lifetime.
        expires_delta: Optional lifetime override.

    Returns:
        str: The encoded JWT token string.
    """
    now = datetime.now(UTC)
    expire = now + (expires_delta or timedelta(hours=settings.jwt_expiration_hours))

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": now,
    }

    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def validate_access_token(token: str, settings: Settings) -> str:
    """
    Validate a bearer token and return the user UUID it was issued to.

    Args:
        token: The encoded JWT.
        settings: Settings providing the secret key and algorithm.

    Returns:
        str: Canonical string form of the ``sub`` UUID.

    Raises:
        AuthenticationError: If the signature, expiry or subject is invalid.
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except ExpiredSignatureError as e:
        raise AuthenticationError("Token has expired") from e
    except JWTError as e:
        raise AuthenticationError("Invalid token") from e

    subject = payload.get("sub")
    if not subject:
        raise AuthenticationError("Invalid token: missing user identifier")

    try:
        return str(uuid.UUID(str(subject)))
    except ValueError as e:
        raise AuthenticationError("Invalid token: malformed user identifier") from e


def authenticate_credentials(
    credentials: HTTPAuthorizationCredentials | None,
    settings: Settings,
) -> str:
    """
    Turn the parsed Authorization header into an authenticated user UUID.

    Routes that must validate other input before authenticating call this
    directly instead of depending on ``get_current_user_id``.

    Raises:
        HTTPException: 401 when the credential is missing or invalid.
    """
    if credentials is None or not credentials.credentials:
        logger.warning("Request rejected: missing bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": "Couldn't find bearer token"},
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return validate_access_token(credentials.credentials, settings)
    except AuthenticationError as e:
        logger.warning("Request rejected: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "unauthorized", "message": str(e)},
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    FastAPI dependency returning the authenticated user's UUID.

    Raises:
        HTTPException: 401 when the bearer token is missing or invalid.
    """
    return authenticate_credentials(credentials, settings)
