"""Local write-through cache for in-progress profile edits.

Drafts are a best-effort mirror of the edit form, never a system of
record: storage failures are logged and swallowed so they never block
editing or saving.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from src.services.referral_service import normalize_referrer

logger = logging.getLogger(__name__)

CREATION_DRAFT_KEY = "draft:create"
EDIT_DRAFT_KEY_PREFIX = "draft:edit:"
PENDING_REFERRAL_KEY = "pending_referral"


class DraftStorage(Protocol):
    """Key/value string storage, in the manner of browser localStorage."""

    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryDraftStorage:
    """In-process storage, mainly for tests and short-lived sessions."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}
        self._lock = Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class FileDraftStorage:
    """One JSON file per key under a directory; survives restarts."""

    _SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{self._SAFE_KEY.sub('_', key)}.json"

    def get_item(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


@dataclass(frozen=True)
class DraftContext:
    """Identifies a draft slot: the creation flow, or edits of one account."""

    key: str

    @classmethod
    def creation(cls) -> "DraftContext":
        return cls(CREATION_DRAFT_KEY)

    @classmethod
    def edit(cls, account_id: str) -> "DraftContext":
        if not account_id:
            raise ValueError("account_id is required for an edit draft")
        return cls(f"{EDIT_DRAFT_KEY_PREFIX}{account_id}")


class DraftStore:
    """save/load/clear of form state per DraftContext."""

    def __init__(self, storage: DraftStorage) -> None:
        self.storage = storage

    def save(self, context: DraftContext, state: dict[str, Any]) -> bool:
        """Persist the edit buffer. Returns False if storage failed."""
        try:
            self.storage.set_item(context.key, json.dumps(state, sort_keys=True))
            return True
        except Exception as e:
            logger.warning("Draft save for %s failed: %s", context.key, e)
            return False

    def load(self, context: DraftContext) -> dict[str, Any] | None:
        """Return the last saved buffer, or None if absent or unreadable."""
        try:
            raw = self.storage.get_item(context.key)
        except Exception as e:
            logger.warning("Draft load for %s failed: %s", context.key, e)
            return None
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt draft %s", context.key)
            return None
        return data if isinstance(data, dict) else None

    def clear(self, context: DraftContext) -> None:
        try:
            self.storage.remove_item(context.key)
        except Exception as e:
            logger.warning("Draft clear for %s failed: %s", context.key, e)


def remember_referral(storage: DraftStorage, referrer_username: str) -> bool:
    """Store the pending referral marker if the handle looks valid."""
    referrer = normalize_referrer(referrer_username)
    if referrer is None:
        return False
    try:
        storage.set_item(PENDING_REFERRAL_KEY, referrer)
        return True
    except Exception as e:
        logger.warning("Could not store pending referral: %s", e)
        return False


def pending_referral(storage: DraftStorage) -> str | None:
    try:
        return storage.get_item(PENDING_REFERRAL_KEY) or None
    except Exception as e:
        logger.warning("Could not read pending referral: %s", e)
        return None


def forget_referral(storage: DraftStorage) -> None:
    try:
        storage.remove_item(PENDING_REFERRAL_KEY)
    except Exception as e:
        logger.warning("Could not clear pending referral: %s", e)
