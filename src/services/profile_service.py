"""Profile business logic service.

Reads and writes tolerate a partially migrated profiles table: reads
step down through column tiers, writes drop columns the store reports
as missing and try again, up to a fixed number of attempts.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence
from uuid import UUID

from fastapi import status
from supabase import Client

from src.api.middleware.error_handler import (
    APIError,
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from src.core.config import get_settings
from src.core.schema import ColumnTier, ProfileSchema, get_profile_schema
from src.core.store_errors import (
    StoreErrorKind,
    classify_store_error,
    missing_column_name,
    store_error_code,
    store_error_message,
)
from src.core.supabase import get_supabase_client
from src.models.profile import CHANNELS, Profile, ProfileLink, public_flag
from src.schemas.auth import UserContext
from src.schemas.profile import ProfileLinkPayload, ProfileSaveRequest
from src.services.face_recognition import FaceCaptureError, validate_descriptor

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,30}$")
DISPLAY_NAME_MAX_LENGTH = 255
BIO_MAX_LENGTH = 1000

# Never written from a save payload: identity, server stamps, and
# fields that have their own update paths.
_PROTECTED_FIELDS = frozenset({"id", "updated_at", "email_verified", "face_descriptor"})
# A missing-column report for these cannot be recovered by exclusion.
_REQUIRED_WRITE_COLUMNS = frozenset({"id", "username", "updated_at"})
# Once this many columns of one migration are reported missing, the
# rest of that migration's columns are dropped in a single step.
GROUP_MISSES_BEFORE_DROP = 3


class UsernameTakenError(ConflictError):
    """The handle is already used by another profile."""

    def __init__(self) -> None:
        super().__init__("Username already taken. Choose a different one.")


class ProfilePermissionError(AuthorizationError):
    """The store's row-level policy rejected the write."""

    def __init__(self) -> None:
        super().__init__("You don't have permission to update this profile. Try signing in again.")


class ProfileSaveError(APIError):
    """Generic store failure while writing a profile."""

    def __init__(self, message: str = "Profile save failed.") -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type="profile_save_failed",
        )


class SchemaRetryExhaustedError(APIError):
    """Still hitting missing columns after the attempt ceiling."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            message=f"Profile save failed after {attempts} attempts. Please try again later.",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type="schema_retry_exhausted",
        )
        self.attempts = attempts


@dataclass
class FetchResult:
    """Outcome of a profile read.

    data set: found. data and error both None: no such row. error set:
    the read failed and the caller should not assume the row is absent.
    """

    data: Profile | None = None
    error: BaseException | None = None

    @property
    def found(self) -> bool:
        return self.data is not None

    @property
    def absent(self) -> bool:
        return self.data is None and self.error is None

    @property
    def failed(self) -> bool:
        return self.error is not None


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def username_error(username: str | None) -> str | None:
    """Return a user-facing problem with a handle, or None if it is fine."""
    handle = (username or "").strip()
    if not handle:
        return "Username is required"
    if not USERNAME_PATTERN.match(handle):
        return "Username must be 3-30 letters, numbers, underscores or hyphens"
    return None


def has_published_username(profile: dict[str, Any] | None) -> bool:
    """True when the profile has a non-empty handle (publicly reachable)."""
    return bool(((profile or {}).get("username") or "").strip())


def validate_profile_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize a candidate profile field set.

    Strings are trimmed and empty strings become None; protected fields
    are dropped.

    Args:
        payload: Candidate fields.

    Returns:
        dict: The normalized field set.

    Raises:
        ValidationError: If the handle is missing or malformed, or a text
            field is too long.
    """
    problem = username_error(payload.get("username"))
    if problem:
        raise ValidationError(problem)

    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        if key in _PROTECTED_FIELDS:
            continue
        if isinstance(value, str):
            value = value.strip() or None
        normalized[key] = value

    if len(normalized.get("display_name") or "") > DISPLAY_NAME_MAX_LENGTH:
        raise ValidationError(f"Display name must be at most {DISPLAY_NAME_MAX_LENGTH} characters")
    if len(normalized.get("bio") or "") > BIO_MAX_LENGTH:
        raise ValidationError(f"Bio must be at most {BIO_MAX_LENGTH} characters")
    return normalized


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class ProfileService:
    """Service for reading and writing profiles."""

    def __init__(
        self,
        client: Client | None = None,
        schema: ProfileSchema | None = None,
        max_attempts: int | None = None,
    ) -> None:
        """Initialize profile service.

        Args:
            client: Supabase client; defaults to the shared database client.
            schema: Schema capability descriptor; defaults to the process-wide one.
            max_attempts: Upsert attempt ceiling; defaults to settings.
        """
        self.client = client or get_supabase_client()
        self.schema = schema or get_profile_schema()
        self.max_attempts = max_attempts or get_settings().profile_upsert_max_attempts

    async def fetch_profile_by_user_id(self, user_id: UUID | str) -> FetchResult:
        """Get a profile by account id.

        Args:
            user_id: The auth user ID.

        Returns:
            FetchResult: Found row, absent, or failed.

        Raises:
            ValidationError: If user_id is empty.
        """
        if not str(user_id or "").strip():
            raise ValidationError("User id is required")
        return self._fetch("id", str(user_id), exact=True)

    async def fetch_profile_by_username(self, username: str) -> FetchResult:
        """Get a profile by handle, compared case-insensitively.

        Args:
            username: The public handle.

        Returns:
            FetchResult: Found row, absent, or failed.

        Raises:
            ValidationError: If username is empty.
        """
        handle = (username or "").strip()
        if not handle:
            raise ValidationError("Username is required")
        return self._fetch("username", handle, exact=False)

    def _fetch(self, column: str, value: str, exact: bool) -> FetchResult:
        tier: ColumnTier | None = ColumnTier.FULL
        while tier is not None:
            query = self.client.table("profiles").select(self.schema.select_clause(tier))
            if exact:
                query = query.eq(column, value)
            else:
                query = query.ilike(column, _escape_like(value))
            try:
                response = query.maybe_single().execute()
            except Exception as e:
                kind = classify_store_error(e)
                if kind is StoreErrorKind.NOT_FOUND:
                    return FetchResult()
                if kind is StoreErrorKind.COLUMN_MISSING and tier.next_tier() is not None:
                    missing = missing_column_name(e)
                    if missing:
                        self.schema.mark_missing(missing)
                    logger.warning(
                        "Profile read by %s hit missing column %s at tier %s, retrying with fewer columns",
                        column,
                        missing or "<unknown>",
                        tier.name,
                    )
                    tier = tier.next_tier()
                    continue
                logger.error(
                    "Profile read by %s failed (%s): %s",
                    column,
                    store_error_code(e) or kind.value,
                    store_error_message(e),
                )
                return FetchResult(error=e)

            data = response.data if response is not None else None
            return FetchResult(data=data or None)

        return FetchResult()

    async def upsert_profile(
        self,
        user_id: UUID | str,
        payload: dict[str, Any],
        email_verified: bool | None = None,
    ) -> Profile:
        """Write the full candidate field set for an account.

        Upserts on id so exactly one row exists per account. If the store
        reports a column as missing, that column (and, for a channel, its
        visibility flag) is excluded and the whole row is sent again with
        a fresh updated_at. When several columns from the same migration
        turn out to be missing, the rest of that migration is excluded too.

        Args:
            user_id: The auth user ID.
            payload: Candidate fields, including visibility flags.
            email_verified: Verification state from the session, if known.

        Returns:
            Profile: The stored row.

        Raises:
            ValidationError: If the username is empty.
            UsernameTakenError: On a unique violation.
            ProfilePermissionError: On a policy rejection.
            SchemaRetryExhaustedError: If the attempt ceiling is reached.
            ProfileSaveError: On any other store failure.
        """
        fields = {key: value for key, value in payload.items() if key not in _PROTECTED_FIELDS}
        username = (fields.get("username") or "").strip()
        if not username:
            raise ValidationError("Username is required")
        fields["username"] = username
        if email_verified is not None:
            fields["email_verified"] = email_verified

        excluded: set[str] = set(self.schema.missing_columns)

        for attempt in range(1, self.max_attempts + 1):
            row = {
                "id": str(user_id),
                **{key: value for key, value in fields.items() if key not in excluded},
                "updated_at": utc_timestamp(),
            }
            try:
                response = self.client.table("profiles").upsert(row, on_conflict="id").execute()
            except Exception as e:
                kind = classify_store_error(e)
                if kind is StoreErrorKind.COLUMN_MISSING:
                    missing = missing_column_name(e)
                    if missing is None or missing in _REQUIRED_WRITE_COLUMNS:
                        logger.error(
                            "Profile upsert for %s hit an unrecoverable missing column: %s",
                            user_id,
                            store_error_message(e),
                        )
                        raise ProfileSaveError() from e
                    self._exclude(excluded, missing)
                    logger.warning(
                        "Profile upsert attempt %d/%d for %s: column %s missing, excluding it",
                        attempt,
                        self.max_attempts,
                        user_id,
                        missing,
                    )
                    continue

                logger.error(
                    "Profile upsert for %s failed (%s): %s",
                    user_id,
                    store_error_code(e) or kind.value,
                    store_error_message(e),
                )
                if kind is StoreErrorKind.UNIQUE_VIOLATION:
                    raise UsernameTakenError() from e
                if kind is StoreErrorKind.PERMISSION_DENIED:
                    raise ProfilePermissionError() from e
                raise ProfileSaveError(store_error_message(e) or "Profile save failed.") from e

            rows = response.data or []
            saved = rows[0] if isinstance(rows, list) and rows else (rows if isinstance(rows, dict) else None)
            if not has_published_username(saved):
                logger.error("Profile upsert for %s returned no row with a username", user_id)
                raise ProfileSaveError("Profile save failed, check permissions.")
            return saved

        logger.error("Profile upsert for %s gave up after %d attempts", user_id, self.max_attempts)
        raise SchemaRetryExhaustedError(self.max_attempts)

    def _exclude(self, excluded: set[str], column: str) -> None:
        excluded.add(column)
        self.schema.mark_missing(column)
        if column in CHANNELS:
            excluded.add(public_flag(column))

        group = self.schema.column_group(column)
        if group and len(self.schema.missing_columns.intersection(group)) >= GROUP_MISSES_BEFORE_DROP:
            dropped = set(group) - excluded
            if dropped:
                logger.warning(
                    "Profile columns %s look unmigrated, excluding %d column(s) from the same migration",
                    ", ".join(sorted(self.schema.missing_columns.intersection(group))),
                    len(dropped),
                )
            excluded.update(group)

    async def save_profile(self, user: UserContext, request: ProfileSaveRequest) -> Profile:
        """Validate and store a profile for the signed-in account.

        Link rows are synced afterwards; a link failure is logged and
        does not fail the save.
        """
        fields = validate_profile_payload(request.to_payload())
        profile = await self.upsert_profile(
            user.user_id,
            fields,
            email_verified=user.email_verified,
        )
        if request.links:
            await self.sync_profile_links(user.user_id, request.links)
        return profile

    async def sync_profile_links(self, user_id: UUID | str, links: Sequence[ProfileLinkPayload]) -> bool:
        """Replace the account's profile_links rows.

        Returns:
            bool: False if the sync failed (already logged).
        """
        rows: list[ProfileLink] = [
            {
                "user_id": str(user_id),
                "platform": link.platform.strip().lower(),
                "url": link.url.strip(),
                "sort_order": link.sort_order if link.sort_order is not None else index,
            }
            for index, link in enumerate(links)
        ]
        try:
            self.client.table("profile_links").delete().eq("user_id", str(user_id)).execute()
            if rows:
                self.client.table("profile_links").insert(rows).execute()
        except Exception as e:
            logger.error("Syncing profile links for %s failed: %s", user_id, store_error_message(e))
            return False
        return True

    async def update_avatar_url(self, user_id: UUID | str, avatar_url: str) -> Profile | None:
        """Avatar-only update; never touches other columns."""
        return self._update_single_field(user_id, "avatar_url", avatar_url)

    async def update_face_descriptor(self, user_id: UUID | str, descriptor: Sequence[float]) -> Profile | None:
        """Descriptor-only update for face enrollment.

        Raises:
            ValidationError: If the descriptor is malformed.
        """
        try:
            vector = validate_descriptor(descriptor)
        except FaceCaptureError as e:
            raise ValidationError(e.message) from e
        return self._update_single_field(user_id, "face_descriptor", vector)

    async def get_face_descriptor(self, user_id: UUID | str) -> list[float] | None:
        """Return the enrolled descriptor, or None if none is stored."""
        if not self.schema.is_available("face_descriptor"):
            return None
        try:
            response = (
                self.client.table("profiles")
                .select("face_descriptor")
                .eq("id", str(user_id))
                .maybe_single()
                .execute()
            )
        except Exception as e:
            kind = classify_store_error(e)
            if kind is StoreErrorKind.NOT_FOUND:
                return None
            if kind is StoreErrorKind.COLUMN_MISSING:
                self.schema.mark_missing("face_descriptor")
                return None
            raise
        data = response.data if response is not None else None
        return (data or {}).get("face_descriptor") or None

    def _update_single_field(self, user_id: UUID | str, column: str, value: Any) -> Profile | None:
        try:
            response = (
                self.client.table("profiles")
                .update({column: value, "updated_at": utc_timestamp()})
                .eq("id", str(user_id))
                .execute()
            )
        except Exception as e:
            kind = classify_store_error(e)
            logger.error("Updating %s for %s failed: %s", column, user_id, store_error_message(e))
            if kind is StoreErrorKind.COLUMN_MISSING:
                self.schema.mark_missing(column)
                raise ProfileSaveError(f"Saving {column} is not supported by this deployment.") from e
            if kind is StoreErrorKind.PERMISSION_DENIED:
                raise ProfilePermissionError() from e
            raise ProfileSaveError() from e
        return response.data[0] if response.data else None
