"""Classification of Supabase/PostgREST errors into domain categories."""

import re
from enum import Enum
from typing import Any

import httpx
from postgrest.exceptions import APIError as PostgrestAPIError


class StoreErrorKind(str, Enum):
    """Categories of store failures the services react to."""

    COLUMN_MISSING = "column_missing"
    UNIQUE_VIOLATION = "unique_violation"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"
    OTHER = "other"


# SQLSTATE and PostgREST codes
_COLUMN_MISSING_CODES = frozenset({"42703", "PGRST204"})
_UNIQUE_VIOLATION_CODES = frozenset({"23505"})
_PERMISSION_DENIED_CODES = frozenset({"42501"})
_NOT_FOUND_CODES = frozenset({"PGRST116", "204"})

# PostgREST only reports the offending column inside the message text:
#   PGRST204: Could not find the 'bio' column of 'profiles' in the schema cache
#   42703:    column profiles.bio does not exist
_COLUMN_PATTERNS = (
    re.compile(r"the '(?P<column>[A-Za-z0-9_]+)' column"),
    re.compile(r"column (?:[A-Za-z0-9_]+\.)?\"?(?P<column>[A-Za-z0-9_]+)\"? does not exist"),
)


def store_error_code(exc: BaseException) -> str:
    """Return the SQLSTATE/PostgREST code carried by an error, if any."""
    code: Any = getattr(exc, "code", None)
    return str(code) if code is not None else ""


def store_error_message(exc: BaseException) -> str:
    """Return the human-readable message carried by an error."""
    message: Any = getattr(exc, "message", None)
    return str(message) if message else str(exc)


def classify_store_error(exc: BaseException) -> StoreErrorKind:
    """Map a store exception onto a StoreErrorKind.

    Classification is driven by the error code; message text is never
    consulted here.

    Args:
        exc: Exception raised by a Supabase call.

    Returns:
        StoreErrorKind: The category of the failure.
    """
    if isinstance(exc, (httpx.TransportError, TimeoutError)):
        return StoreErrorKind.TRANSIENT

    if not isinstance(exc, PostgrestAPIError):
        return StoreErrorKind.OTHER

    code = store_error_code(exc)
    if code in _COLUMN_MISSING_CODES:
        return StoreErrorKind.COLUMN_MISSING
    if code in _UNIQUE_VIOLATION_CODES:
        return StoreErrorKind.UNIQUE_VIOLATION
    if code in _PERMISSION_DENIED_CODES:
        return StoreErrorKind.PERMISSION_DENIED
    if code in _NOT_FOUND_CODES:
        return StoreErrorKind.NOT_FOUND
    if code.startswith("08") or code in {"500", "502", "503", "504"}:
        return StoreErrorKind.TRANSIENT
    return StoreErrorKind.OTHER


def missing_column_name(exc: BaseException) -> str | None:
    """Extract the column named by a COLUMN_MISSING error.

    Args:
        exc: Exception already classified as COLUMN_MISSING.

    Returns:
        str | None: The column name, or None if it cannot be determined.
    """
    message = store_error_message(exc)
    for pattern in _COLUMN_PATTERNS:
        match = pattern.search(message)
        if match:
            return match.group("column")
    return None
