"""Capability descriptor for the deployed profiles table schema.

The profiles table is migrated incrementally, so an older deployment may
lack optional columns. ProfileSchema records which optional columns are
unavailable (from configuration, a startup probe, or errors seen at
runtime) and derives the column sets used for reads and writes.
"""

import logging
from enum import Enum
from functools import lru_cache
from threading import Lock

from supabase import Client

from src.core.config import get_settings
from src.core.store_errors import StoreErrorKind, classify_store_error
from src.models.profile import CHANNELS, public_flag

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3

BASE_COLUMNS: tuple[str, ...] = (
    "id",
    "username",
    "display_name",
    "avatar_url",
    *CHANNELS,
    "updated_at",
)
EXTENDED_COLUMNS: tuple[str, ...] = (
    "bio",
    *(public_flag(channel) for channel in CHANNELS),
    "email_verified",
)
NEWEST_COLUMNS: tuple[str, ...] = ("face_descriptor",)

OPTIONAL_COLUMNS: tuple[str, ...] = EXTENDED_COLUMNS + NEWEST_COLUMNS


class ColumnTier(int, Enum):
    """Read tiers, from the full column list down to base columns only."""

    FULL = 0
    REDUCED = 1
    BASE = 2

    def next_tier(self) -> "ColumnTier | None":
        """Return the next smaller tier, or None at BASE."""
        if self is ColumnTier.BASE:
            return None
        return ColumnTier(self.value + 1)


_TIER_COLUMNS: dict[ColumnTier, tuple[str, ...]] = {
    ColumnTier.FULL: BASE_COLUMNS + EXTENDED_COLUMNS + NEWEST_COLUMNS,
    ColumnTier.REDUCED: BASE_COLUMNS + EXTENDED_COLUMNS,
    ColumnTier.BASE: BASE_COLUMNS,
}


class ProfileSchema:
    """Known capabilities of the profiles table."""

    def __init__(self, missing: frozenset[str] | set[str] = frozenset(), version: int = SCHEMA_VERSION) -> None:
        self.version = version
        self._missing: set[str] = set(missing)
        self._lock = Lock()

    @property
    def missing_columns(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._missing)

    def is_available(self, column: str) -> bool:
        with self._lock:
            return column not in self._missing

    def mark_missing(self, column: str) -> bool:
        """Record a column as absent from the deployed schema.

        Base columns are never marked; a missing base column is a real
        failure, not drift.

        Returns:
            bool: True if the column was newly recorded.
        """
        if column in BASE_COLUMNS:
            return False
        with self._lock:
            if column in self._missing:
                return False
            self._missing.add(column)
        logger.warning("Profile column %s is missing from the deployed schema", column)
        return True

    def columns_for(self, tier: ColumnTier) -> tuple[str, ...]:
        """Columns to select at a tier, minus those known to be missing."""
        missing = self.missing_columns
        return tuple(column for column in _TIER_COLUMNS[tier] if column not in missing)

    def select_clause(self, tier: ColumnTier) -> str:
        return ",".join(self.columns_for(tier))

    @staticmethod
    def column_group(column: str) -> tuple[str, ...]:
        """Optional columns added by the same migration as column; empty for base columns."""
        for group in (EXTENDED_COLUMNS, NEWEST_COLUMNS):
            if column in group:
                return group
        return ()

    def probe(self, client: Client) -> frozenset[str]:
        """Probe every optional column once and record the missing ones.

        Args:
            client: Supabase client to query with.

        Returns:
            frozenset[str]: Columns found missing by this probe.
        """
        found: set[str] = set()
        for column in OPTIONAL_COLUMNS:
            if not self.is_available(column):
                continue
            try:
                client.table("profiles").select(column).limit(1).execute()
            except Exception as e:
                if classify_store_error(e) is StoreErrorKind.COLUMN_MISSING:
                    self.mark_missing(column)
                    found.add(column)
                else:
                    logger.warning("Schema probe for %s failed: %s", column, e)
        logger.info(
            "Profile schema v%d probed, %d optional column(s) missing",
            self.version,
            len(self.missing_columns),
        )
        return frozenset(found)


@lru_cache
def get_profile_schema() -> ProfileSchema:
    """Get the process-wide schema descriptor seeded from settings."""
    settings = get_settings()
    return ProfileSchema(missing=settings.profile_disabled_columns_set)
