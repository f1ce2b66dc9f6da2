"""FastAPI dependency injection functions."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from supabase import Client

from src.api.middleware.auth import AuthError, AuthErrorCode, parse_bearer, verify_access_token
from src.core.schema import ProfileSchema, get_profile_schema
from src.core.config import get_settings
from src.core.supabase import create_user_client, get_supabase_client
from src.schemas.auth import UserContext


async def get_current_user(
    authorization: Annotated[str, Header(description="Bearer token")] = "",
) -> UserContext:
    """Extract and validate the current user from the Authorization header.

    Args:
        authorization: The Authorization header value (Bearer token).

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        HTTPException: 401 if the token is missing or rejected, 503 if the
            identity provider cannot be reached.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not logged in.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = parse_bearer(authorization)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_access_token(token)
    except AuthError as e:
        if e.code == AuthErrorCode.PROVIDER_UNAVAILABLE:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=e.message,
            ) from e

        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def get_store_client() -> Client:
    """Provide the database client; overridable in tests."""
    return get_supabase_client()


def get_user_store_client(user: Annotated[UserContext, Depends(get_current_user)]) -> Client:
    """Provide the client for profile writes made on the caller's behalf.

    With a publishable key configured the client carries the caller's
    token, so row-level policies apply; otherwise the shared client is
    used and queries are scoped to the verified user id.
    """
    if get_settings().supabase_publishable_key and user.access_token:
        return create_user_client(user.access_token)
    return get_supabase_client()


def get_schema() -> ProfileSchema:
    """Provide the profile schema descriptor; overridable in tests."""
    return get_profile_schema()


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
StoreClient = Annotated[Client, Depends(get_store_client)]
UserStoreClient = Annotated[Client, Depends(get_user_store_client)]
Schema = Annotated[ProfileSchema, Depends(get_schema)]
