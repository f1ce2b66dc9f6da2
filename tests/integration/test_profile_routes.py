"""Integration tests for profile routes."""

from types import SimpleNamespace
from typing import Any
from unittest.mock import patch

from fastapi.testclient import TestClient

USER_ID = "660e8400-e29b-41d4-a716-446655440000"
OTHER_ID = "770e8400-e29b-41d4-a716-446655440000"

ALICE = {
    "username": "alice",
    "display_name": "Alice",
    "instagram": "alice.ig",
    "instagram_public": True,
    "phone": "+1 555 0100",
    "phone_public": False,
}


def descriptor(offset: float = 0.0) -> list[float]:
    values = [0.0] * 128
    values[0] = 1.0
    values[1] = offset
    return values


def failing_reads(store: Any, error: Exception) -> None:
    """Make every select on the fake store raise `error`."""
    original = store.run

    def run(query: Any) -> Any:
        if query.op == "select":
            raise error
        return original(query)

    store.run = run


class TestSaveProfile:
    """Tests for POST /profile/save."""

    def test_save_creates_profile(self, client: TestClient, fake_store: Any) -> None:
        """Test that a save stores the row and returns it."""
        response = client.post("/profile/save", json=ALICE)

        assert response.status_code == 200
        profile = response.json()["profile"]
        assert profile["id"] == USER_ID
        assert profile["username"] == "alice"
        assert profile["email_verified"] is True
        assert profile["face_enrolled"] is False
        assert len(fake_store.rows["profiles"]) == 1

    def test_save_again_keeps_one_row(self, client: TestClient, fake_store: Any) -> None:
        client.post("/profile/save", json=ALICE)
        response = client.post("/profile/save", json={**ALICE, "display_name": "Alice B"})

        assert response.status_code == 200
        assert response.json()["profile"]["display_name"] == "Alice B"
        assert len(fake_store.rows["profiles"]) == 1

    def test_client_cannot_set_protected_fields(self, client: TestClient, fake_store: Any) -> None:
        """Test that id, email_verified and face_descriptor in the body are ignored."""
        response = client.post(
            "/profile/save",
            json={**ALICE, "id": OTHER_ID, "email_verified": False, "face_descriptor": descriptor()},
        )

        assert response.status_code == 200
        row = fake_store.rows["profiles"][0]
        assert row["id"] == USER_ID
        assert row["email_verified"] is True
        assert "face_descriptor" not in row

    def test_invalid_username_is_400(self, client: TestClient, fake_store: Any) -> None:
        response = client.post("/profile/save", json={**ALICE, "username": "no spaces"})

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert fake_store.calls == []

    def test_missing_username_is_400(self, client: TestClient) -> None:
        response = client.post("/profile/save", json={"display_name": "Alice"})

        assert response.status_code == 400
        assert response.json()["message"] == "Username is required"

    def test_malformed_body_is_400(self, client: TestClient) -> None:
        """Test that schema validation failures use the 400 error format."""
        response = client.post("/profile/save", json={**ALICE, "bio": "x" * 1001})

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "validation_error"
        assert data["details"][0]["loc"][-1] == "bio"

    def test_duplicate_username_is_409(self, client: TestClient, fake_store: Any) -> None:
        """Test that a handle used by another account is a conflict, case-insensitively."""
        fake_store.rows["profiles"].append({"id": OTHER_ID, "username": "Alice"})

        response = client.post("/profile/save", json=ALICE)

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_policy_rejection_is_403(self, client: TestClient, fake_store: Any, make_store_error: Any) -> None:
        original = fake_store.run

        def run(query: Any) -> Any:
            if query.op == "upsert":
                raise make_store_error("42501", "new row violates row-level security policy")
            return original(query)

        fake_store.run = run

        response = client.post("/profile/save", json=ALICE)

        assert response.status_code == 403

    def test_schema_drift_is_absorbed(self, client: TestClient, fake_store: Any) -> None:
        """Test that missing optional columns are dropped and the rest is stored."""
        fake_store.columns["profiles"] -= {"bio", "instagram_public"}

        response = client.post("/profile/save", json={**ALICE, "bio": "Hello"})

        assert response.status_code == 200
        row = fake_store.rows["profiles"][0]
        assert "bio" not in row
        assert row["instagram"] == "alice.ig"
        assert "instagram_public" not in row
        assert row["username"] == "alice"

    def test_links_are_synced(self, client: TestClient, fake_store: Any) -> None:
        response = client.post(
            "/profile/save",
            json={**ALICE, "links": [{"platform": "Instagram", "url": "alice.ig"}]},
        )

        assert response.status_code == 200
        assert fake_store.rows["profile_links"] == [
            {"user_id": USER_ID, "platform": "instagram", "url": "alice.ig", "sort_order": 0}
        ]

    def test_requires_session(self, anonymous_client: TestClient) -> None:
        response = anonymous_client.post("/profile/save", json=ALICE)

        assert response.status_code == 401


class TestGetMyProfile:
    """Tests for GET /profile/me."""

    def test_no_profile_yet(self, client: TestClient) -> None:
        """Test that a new account gets null, not an error."""
        response = client.get("/profile/me")

        assert response.status_code == 200
        assert response.json() == {"profile": None, "has_profile": False}

    def test_returns_saved_profile(self, client: TestClient) -> None:
        client.post("/profile/save", json=ALICE)

        data = client.get("/profile/me").json()

        assert data["has_profile"] is True
        assert data["profile"]["username"] == "alice"
        assert "face_descriptor" not in data["profile"]

    def test_read_failure_is_503(self, client: TestClient, fake_store: Any, make_store_error: Any) -> None:
        """Test that a failed read is not reported as 'no profile'."""
        failing_reads(fake_store, make_store_error("XX000", "internal error"))

        response = client.get("/profile/me")

        assert response.status_code == 503


class TestPublicProfile:
    """Tests for GET /profile/u/{username}."""

    def test_public_view_shows_only_visible_channels(self, client: TestClient) -> None:
        client.post("/profile/save", json=ALICE)

        response = client.get("/profile/u/ALICE")

        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "alice"
        assert [channel["key"] for channel in data["channels"]] == ["instagram"]
        assert "phone" not in str(data)

    def test_unknown_username_is_404(self, client: TestClient) -> None:
        response = client.get("/profile/u/nobody")

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_like_wildcards_do_not_match(self, client: TestClient) -> None:
        """Test that an underscore in the path is matched literally."""
        client.post("/profile/save", json={**ALICE, "username": "alice_b"})

        assert client.get("/profile/u/alice_b").status_code == 200
        assert client.get("/profile/u/aliceXb").status_code == 404

    def test_public_view_needs_no_session(self, anonymous_client: TestClient, fake_store: Any) -> None:
        fake_store.rows["profiles"].append({"id": OTHER_ID, "username": "bob", "display_name": "Bob"})

        response = anonymous_client.get("/profile/u/bob")

        assert response.status_code == 200
        assert response.json()["display_name"] == "Bob"


class TestPublicVCard:
    """Tests for GET /profile/u/{username}/vcard."""

    def test_contact_card_has_visible_channels_only(self, client: TestClient) -> None:
        client.post("/profile/save", json={**ALICE, "email": "alice@example.com", "email_public": True})

        with patch("src.api.routes.profiles.get_settings") as mock_settings:
            mock_settings.return_value = SimpleNamespace(public_site_url="https://qr.example/")
            response = client.get("/profile/u/alice/vcard")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/vcard")
        assert 'filename="alice.vcf"' in response.headers["content-disposition"]
        lines = response.text.split("\r\n")
        assert "FN:Alice" in lines
        assert "EMAIL:alice@example.com" in lines
        assert "URL:https://qr.example/p/alice" in lines
        assert not any(line.startswith("TEL") for line in lines)

    def test_unknown_username_is_404(self, client: TestClient) -> None:
        response = client.get("/profile/u/nobody/vcard")

        assert response.status_code == 404


class TestAvatarUrl:
    """Tests for POST /profile/avatar."""

    def test_updates_avatar_only(self, client: TestClient, fake_store: Any) -> None:
        client.post("/profile/save", json=ALICE)

        response = client.post("/profile/avatar", json={"avatar_url": "https://cdn.example/a.png"})

        assert response.status_code == 200
        assert response.json()["profile"]["avatar_url"] == "https://cdn.example/a.png"
        updates = [payload for table, op, payload in fake_store.calls if op == "update"]
        assert len(updates) == 1
        assert set(updates[0]) == {"avatar_url", "updated_at"}
        assert fake_store.rows["profiles"][0]["display_name"] == "Alice"

    def test_requires_profile(self, client: TestClient) -> None:
        response = client.post("/profile/avatar", json={"avatar_url": "https://cdn.example/a.png"})

        assert response.status_code == 404

    def test_empty_url_is_400(self, client: TestClient) -> None:
        response = client.post("/profile/avatar", json={"avatar_url": ""})

        assert response.status_code == 400

    def test_requires_session(self, anonymous_client: TestClient) -> None:
        response = anonymous_client.post("/profile/avatar", json={"avatar_url": "https://cdn.example/a.png"})

        assert response.status_code == 401


class TestFaceRoutes:
    """Tests for face enrollment and verification routes."""

    def test_enroll_requires_profile(self, client: TestClient) -> None:
        response = client.post("/profile/face-descriptor", json={"descriptor": descriptor()})

        assert response.status_code == 404

    def test_enroll_writes_descriptor_only(self, client: TestClient, fake_store: Any) -> None:
        """Test that enrollment updates only the descriptor and timestamp."""
        client.post("/profile/save", json=ALICE)

        response = client.post("/profile/face-descriptor", json={"descriptor": descriptor()})

        assert response.status_code == 200
        assert response.json()["profile"]["face_enrolled"] is True
        updates = [payload for table, op, payload in fake_store.calls if op == "update"]
        assert len(updates) == 1
        assert set(updates[0]) == {"face_descriptor", "updated_at"}

    def test_wrong_length_descriptor_is_400(self, client: TestClient) -> None:
        response = client.post("/profile/face-descriptor", json={"descriptor": [0.1] * 10})

        assert response.status_code == 400

    def test_degenerate_descriptor_is_400(self, client: TestClient) -> None:
        client.post("/profile/save", json=ALICE)

        response = client.post("/profile/face-descriptor", json={"descriptor": [0.0] * 128})

        assert response.status_code == 400

    def test_verify_match_and_mismatch(self, client: TestClient) -> None:
        client.post("/profile/save", json=ALICE)
        client.post("/profile/face-descriptor", json={"descriptor": descriptor()})

        same = client.post("/profile/face/verify", json={"descriptor": descriptor(0.1)}).json()
        other = client.post("/profile/face/verify", json={"descriptor": descriptor(2.0)}).json()

        assert same["match"] is True
        assert same["distance"] == 0.1
        assert other["match"] is False
        assert other["enrolled"] is True

    def test_verify_without_enrollment(self, client: TestClient) -> None:
        client.post("/profile/save", json=ALICE)

        data = client.post("/profile/face/verify", json={"descriptor": descriptor()}).json()

        assert data == {"match": False, "distance": None, "enrolled": False}
