"""Pytest configuration and fixtures."""

import copy
import os
from collections.abc import Generator
from types import SimpleNamespace
from typing import Any
from unittest.mock import MagicMock
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from postgrest.exceptions import APIError as PostgrestAPIError

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")

TEST_USER_ID = UUID("660e8400-e29b-41d4-a716-446655440000")
OTHER_USER_ID = UUID("770e8400-e29b-41d4-a716-446655440000")


def store_error(code: str, message: str) -> PostgrestAPIError:
    """Build a PostgREST error the way supabase-py raises it."""
    return PostgrestAPIError({"code": code, "message": message, "details": None, "hint": None})


class FakeQuery:
    """Chainable query builder mirroring the subset of postgrest used by the services."""

    def __init__(self, store: "FakeSupabase", table: str) -> None:
        self.store = store
        self.table = table
        self.op = "select"
        self.columns: str = "*"
        self.payload: Any = None
        self.filters: list[tuple[str, Any, bool]] = []
        self.single = False

    def select(self, columns: str = "*") -> "FakeQuery":
        self.op = "select"
        self.columns = columns
        return self

    def upsert(self, row: dict[str, Any], on_conflict: str = "id") -> "FakeQuery":
        self.op = "upsert"
        self.payload = row
        return self

    def update(self, values: dict[str, Any]) -> "FakeQuery":
        self.op = "update"
        self.payload = values
        return self

    def insert(self, rows: Any) -> "FakeQuery":
        self.op = "insert"
        self.payload = rows
        return self

    def delete(self) -> "FakeQuery":
        self.op = "delete"
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters.append((column, value, False))
        return self

    def ilike(self, column: str, pattern: str) -> "FakeQuery":
        unescaped = pattern.replace("\\_", "_").replace("\\%", "%").replace("\\\\", "\\")
        self.filters.append((column, unescaped, True))
        return self

    def limit(self, count: int) -> "FakeQuery":
        return self

    def maybe_single(self) -> "FakeQuery":
        self.single = True
        return self

    def execute(self) -> Any:
        return self.store.run(self)


class FakeSupabase:
    """In-memory stand-in for the Supabase tables the services touch.

    Columns not listed for a table raise the same errors PostgREST
    raises for a column missing from the schema cache.
    """

    PROFILE_COLUMNS = frozenset(
        {
            "id", "username", "display_name", "bio", "avatar_url",
            "phone", "email", "whatsapp", "facebook", "instagram", "tiktok",
            "telegram", "linkedin", "x", "website",
            "phone_public", "email_public", "whatsapp_public", "facebook_public",
            "instagram_public", "tiktok_public", "telegram_public", "linkedin_public",
            "x_public", "website_public",
            "email_verified", "face_descriptor", "updated_at",
        }
    )

    def __init__(self, missing_profile_columns: set[str] | None = None) -> None:
        self.columns = {
            "profiles": set(self.PROFILE_COLUMNS) - set(missing_profile_columns or ()),
            "profile_links": {"user_id", "platform", "url", "sort_order"},
            "referrals": {"referred_user_id", "referrer_username"},
        }
        self.rows: dict[str, list[dict[str, Any]]] = {name: [] for name in self.columns}
        self.calls: list[tuple[str, str, Any]] = []
        self.auth = MagicMock()
        self.storage = MagicMock()

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def _require(self, table: str, names: list[str], reading: bool) -> None:
        for name in names:
            if name not in self.columns[table]:
                if reading:
                    raise store_error("42703", f"column {table}.{name} does not exist")
                raise store_error("PGRST204", f"Could not find the '{name}' column of '{table}' in the schema cache")

    def _matches(self, row: dict[str, Any], query: FakeQuery) -> bool:
        for column, value, insensitive in query.filters:
            current = row.get(column)
            if insensitive:
                if current is None or str(current).lower() != str(value).lower():
                    return False
            elif str(current) != str(value):
                return False
        return True

    def run(self, query: FakeQuery) -> Any:
        self.calls.append((query.table, query.op, copy.deepcopy(query.payload)))
        rows = self.rows[query.table]
        matching = [row for row in rows if self._matches(row, query)]

        if query.op == "select":
            names = None if query.columns == "*" else [c.strip() for c in query.columns.split(",")]
            if names:
                self._require(query.table, names, reading=True)
            data = [{k: row.get(k) for k in names} if names else dict(row) for row in matching]
            if query.single:
                return SimpleNamespace(data=data[0]) if data else None
            return SimpleNamespace(data=data)

        if query.op == "upsert":
            row = dict(query.payload)
            self._require(query.table, list(row), reading=False)
            if query.table == "profiles":
                self._check_unique_username(row)
                key = "id"
            else:
                key = "referred_user_id"
            existing = next((r for r in rows if r.get(key) == row.get(key)), None)
            if existing is None:
                rows.append(row)
                existing = row
            else:
                existing.update(row)
            return SimpleNamespace(data=[dict(existing)])

        if query.op == "update":
            self._require(query.table, list(query.payload), reading=False)
            for row in matching:
                row.update(query.payload)
            return SimpleNamespace(data=[dict(row) for row in matching])

        if query.op == "insert":
            new_rows = query.payload if isinstance(query.payload, list) else [query.payload]
            for row in new_rows:
                self._require(query.table, list(row), reading=False)
                rows.append(dict(row))
            return SimpleNamespace(data=[dict(row) for row in new_rows])

        if query.op == "delete":
            self.rows[query.table] = [row for row in rows if row not in matching]
            return SimpleNamespace(data=matching)

        raise AssertionError(f"unsupported op {query.op}")

    def _check_unique_username(self, row: dict[str, Any]) -> None:
        username = (row.get("username") or "").lower()
        if not username:
            return
        for other in self.rows["profiles"]:
            if other.get("id") != row.get("id") and (other.get("username") or "").lower() == username:
                raise store_error("23505", 'duplicate key value violates unique constraint "profiles_username_key"')

    def written_rows(self, table: str = "profiles") -> list[dict[str, Any]]:
        """Payloads of every upsert sent to a table, in order."""
        return [payload for name, op, payload in self.calls if name == table and op == "upsert"]


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_store() -> FakeSupabase:
    """Provide an in-memory store with the full profile schema."""
    return FakeSupabase()


@pytest.fixture
def make_store() -> type[FakeSupabase]:
    """Provide the fake store class, for stores with missing columns."""
    return FakeSupabase


@pytest.fixture
def make_store_error() -> Any:
    """Provide a factory for PostgREST errors."""
    return store_error


@pytest.fixture
def user_context() -> Any:
    """Provide the signed-in test user."""
    from src.schemas.auth import UserContext

    return UserContext(
        user_id=TEST_USER_ID,
        email="alice@example.com",
        email_verified=True,
        access_token="test-access-token",
    )


@pytest.fixture
def client(fake_store: FakeSupabase, user_context: Any) -> Generator[TestClient, None, None]:
    """Provide a test client signed in as the test user, backed by the fake store.

    Args:
        fake_store: In-memory store fixture.
        user_context: The authenticated user.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_current_user, get_schema, get_store_client, get_user_store_client
    from src.core.schema import ProfileSchema
    from src.main import app

    schema = ProfileSchema()
    app.dependency_overrides[get_current_user] = lambda: user_context
    app.dependency_overrides[get_store_client] = lambda: fake_store
    app.dependency_overrides[get_user_store_client] = lambda: fake_store
    app.dependency_overrides[get_schema] = lambda: schema

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(fake_store: FakeSupabase) -> Generator[TestClient, None, None]:
    """Provide a test client with real authentication and the fake store.

    Yields:
        TestClient: FastAPI test client without a session override.
    """
    from src.api.deps import get_schema, get_store_client, get_user_store_client
    from src.core.schema import ProfileSchema
    from src.main import app

    schema = ProfileSchema()
    app.dependency_overrides[get_store_client] = lambda: fake_store
    app.dependency_overrides[get_user_store_client] = lambda: fake_store
    app.dependency_overrides[get_schema] = lambda: schema

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
