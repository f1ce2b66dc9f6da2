"""Account deletion."""

import logging
from uuid import UUID

from fastapi import status
from supabase import Client

from src.api.middleware.error_handler import APIError
from src.core.store_errors import store_error_message
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)


class AccountDeletionError(APIError):
    """The auth account could not be removed."""

    def __init__(self) -> None:
        super().__init__(
            message="Failed to delete account. Please contact support.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type="account_deletion_failed",
        )


class AccountService:
    """Removes an account and the data attached to it."""

    def __init__(self, client: Client | None = None) -> None:
        self.client = client or get_supabase_client()

    async def delete_account(self, user_id: UUID | str) -> None:
        """Delete link rows, the profile row, then the auth user.

        Only the auth deletion is fatal; leftover rows are logged.

        Raises:
            AccountDeletionError: If the auth user could not be deleted.
        """
        uid = str(user_id)
        for table, column in (("profile_links", "user_id"), ("profiles", "id")):
            try:
                self.client.table(table).delete().eq(column, uid).execute()
            except Exception as e:
                logger.error("Deleting %s rows for %s failed: %s", table, uid, store_error_message(e))

        try:
            self.client.auth.admin.delete_user(uid)
        except Exception as e:
            logger.error("Deleting auth user %s failed: %s", uid, store_error_message(e))
            raise AccountDeletionError() from e

        logger.info("Account %s deleted", uid)
