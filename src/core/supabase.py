"""Supabase client factory for database, storage and auth operations."""

from functools import lru_cache
from typing import Any

from supabase import Client, create_client
from supabase.lib.client_options import SyncClientOptions
from supabase_auth import SyncMemoryStorage

from src.core.config import get_settings


@lru_cache
def get_supabase_client() -> Client:
    """Get the lazily created Supabase client for database operations.

    Uses the secret key, which bypasses RLS at the PostgREST level. Only
    use it after the caller's identity has been verified and every query
    is scoped to that identity.

    Services accept an explicit client and only fall back to this one
    when none is injected.

    Returns:
        Client: Supabase client instance.
    """
    settings = get_settings()
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
    )


def create_auth_client() -> Client:
    """Create a fresh Supabase client for auth operations.

    Use this for get_user(), sign_in_with_otp(), verify_otp() or any
    method that may modify the client's Authorization header, so the
    shared database client is never polluted with a user session.

    Returns:
        Client: Fresh Supabase client instance with isolated session storage.
    """
    settings = get_settings()
    options = SyncClientOptions(
        storage=SyncMemoryStorage(),
        auto_refresh_token=False,
        persist_session=False,
    )
    return create_client(
        settings.supabase_url,
        settings.supabase_secret_key,
        options=options,
    )


def create_user_client(access_token: str) -> Client:
    """Create a Supabase client that acts as the signed-in user.

    Requests carry the publishable key and the user's access token, so
    the database applies its row-level policies to every write.

    Args:
        access_token: The caller's verified access token.

    Returns:
        Client: Fresh Supabase client scoped to the user.
    """
    settings = get_settings()
    options = SyncClientOptions(
        headers={"Authorization": f"Bearer {access_token}"},
        storage=SyncMemoryStorage(),
        auto_refresh_token=False,
        persist_session=False,
    )
    return create_client(
        settings.supabase_url,
        settings.supabase_publishable_key,
        options=options,
    )


async def check_database_connection(client: Client | None = None) -> dict[str, Any]:
    """Check if database connection is healthy.

    Returns:
        dict: Connection status with 'healthy' boolean and optional 'error' message.
    """
    try:
        client = client or get_supabase_client()
        client.table("profiles").select("id").limit(1).execute()
        return {"healthy": True}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
