"""Session token verification against the hosted identity provider."""

import logging
from enum import Enum
from uuid import UUID

from src.core.supabase import create_auth_client
from src.core.store_errors import StoreErrorKind, classify_store_error
from src.schemas.auth import UserContext

logger = logging.getLogger(__name__)


class AuthErrorCode(str, Enum):
    """Authentication error codes."""

    INVALID_TOKEN = "INVALID_TOKEN"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"


class AuthError(Exception):
    """Authentication error with specific error code.

    Raised when a bearer token cannot be resolved to an account.
    """

    def __init__(self, message: str, code: AuthErrorCode) -> None:
        """Initialize authentication error.

        Args:
            message: Human-readable error description.
            code: Specific error code for programmatic handling.
        """
        self.message = message
        self.code = code
        super().__init__(message)


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from a "Bearer <token>" header value."""
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def verify_access_token(token: str) -> UserContext:
    """Resolve an access token to the account it belongs to.

    The token is handed to the identity provider (auth.get_user), which
    rejects expired or revoked sessions.

    Args:
        token: The session access token.

    Returns:
        UserContext: The account identity for the token.

    Raises:
        AuthError: If the token is invalid or the provider is unreachable.
    """
    try:
        response = create_auth_client().auth.get_user(token)
    except Exception as e:
        if classify_store_error(e) is StoreErrorKind.TRANSIENT:
            logger.error("Identity provider unreachable: %s", e)
            raise AuthError(
                "Could not verify session, try again",
                AuthErrorCode.PROVIDER_UNAVAILABLE,
            ) from e
        logger.info("Session token rejected: %s", e)
        raise AuthError(
            "Invalid or expired session. Please sign in again.",
            AuthErrorCode.INVALID_TOKEN,
        ) from e

    user = getattr(response, "user", None) if response else None
    if user is None or not getattr(user, "id", None):
        raise AuthError(
            "Invalid or expired session. Please sign in again.",
            AuthErrorCode.INVALID_TOKEN,
        )

    return UserContext(
        user_id=UUID(str(user.id)),
        email=getattr(user, "email", None),
        email_verified=getattr(user, "email_confirmed_at", None) is not None,
        access_token=token,
    )
