"""Unit tests for the client-side save controller."""

import asyncio
import json
from typing import Any, Sequence

import httpx
import pytest

from src.schemas.auth import UserContext
from src.schemas.profile import ProfileSaveRequest
from src.services.draft_store import (
    DraftContext,
    DraftStore,
    MemoryDraftStorage,
    pending_referral,
    remember_referral,
)
from src.services.profile_service import ProfileService
from src.services.referral_service import ReferralOutcome
from src.services.save_orchestrator import (
    SHARED_STEP,
    GatewayError,
    HttpProfileGateway,
    LocalSession,
    ProfileSaveController,
    SaveStatus,
    face_descriptor_sink,
    sync_pending_referral,
)

ACCOUNT = "660e8400-e29b-41d4-a716-446655440000"
SESSION = LocalSession(account_id=ACCOUNT, access_token="tok")
FORM = {"username": "alice", "display_name": "Alice", "instagram": "alice.ig", "instagram_public": True}


class StaticSessions:
    def __init__(self, session: LocalSession | None = SESSION) -> None:
        self.session = session

    async def get_session(self) -> LocalSession | None:
        return self.session


class FakeGateway:
    """Gateway double with a scripted save result."""

    def __init__(self, result: Any = None, delay: float = 0.0) -> None:
        self.result = result
        self.delay = delay
        self.saved: list[dict[str, Any]] = []
        self.descriptors: list[list[float]] = []
        self.referrals: list[str] = []
        self.draft_at_call: dict[str, Any] | None = None
        self.drafts: DraftStore | None = None
        self.referral_result: Any = ReferralOutcome.RECORDED

    async def save_profile(self, session: LocalSession, fields: dict[str, Any]) -> dict[str, Any]:
        if self.drafts is not None:
            self.draft_at_call = self.drafts.load(DraftContext.creation()) or self.drafts.load(
                DraftContext.edit(session.account_id)
            )
        self.saved.append(fields)
        if self.delay:
            await asyncio.sleep(self.delay)
        if isinstance(self.result, Exception):
            raise self.result
        return self.result or {"id": session.account_id, **fields}

    async def save_face_descriptor(self, session: LocalSession, descriptor: Sequence[float]) -> dict[str, Any]:
        self.descriptors.append(list(descriptor))
        return {"id": session.account_id}

    async def record_referral(self, session: LocalSession, referrer_username: str) -> ReferralOutcome:
        self.referrals.append(referrer_username)
        if isinstance(self.referral_result, Exception):
            raise self.referral_result
        return self.referral_result


class ServiceGateway:
    """Gateway that calls the profile service in-process."""

    def __init__(self, service: ProfileService) -> None:
        self.service = service

    async def save_profile(self, session: LocalSession, fields: dict[str, Any]) -> dict[str, Any]:
        user = UserContext(
            user_id=session.account_id,
            email="alice@example.com",
            email_verified=True,
            access_token=session.access_token,
        )
        return await self.service.save_profile(user, ProfileSaveRequest(**fields))


@pytest.fixture
def drafts() -> DraftStore:
    return DraftStore(MemoryDraftStorage())


def controller(gateway: Any, drafts: DraftStore, account_id: str | None = None, **kwargs: Any) -> ProfileSaveController:
    return ProfileSaveController(gateway, kwargs.pop("sessions", StaticSessions()), drafts, account_id=account_id, **kwargs)


class TestSaveValidation:
    """Tests for checks before any network call."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username", ["", "   ", "ab", "has space", "a" * 31])
    async def test_invalid_handle_never_calls_gateway(self, drafts: DraftStore, username: str) -> None:
        """Test that a bad handle fails locally."""
        gateway = FakeGateway()

        outcome = await controller(gateway, drafts).save({**FORM, "username": username})

        assert outcome.status is SaveStatus.INVALID
        assert gateway.saved == []

    @pytest.mark.asyncio
    async def test_missing_session_is_expired(self, drafts: DraftStore) -> None:
        gateway = FakeGateway()

        outcome = await controller(gateway, drafts, sessions=StaticSessions(None)).save(FORM)

        assert outcome.status is SaveStatus.SESSION_EXPIRED
        assert gateway.saved == []

    @pytest.mark.asyncio
    async def test_session_for_other_account_is_expired(self, drafts: DraftStore) -> None:
        """Test that a stale tab never writes to the wrong account."""
        gateway = FakeGateway()
        other = LocalSession(account_id="someone-else", access_token="tok")

        outcome = await controller(gateway, drafts, account_id=ACCOUNT, sessions=StaticSessions(other)).save(FORM)

        assert outcome.status is SaveStatus.SESSION_EXPIRED
        assert "sign in" in outcome.message
        assert gateway.saved == []


class TestSaveFlow:
    """Tests for the network part of a save."""

    @pytest.mark.asyncio
    async def test_draft_written_before_request(self, drafts: DraftStore) -> None:
        """Test that the form is persisted before the save request starts."""
        gateway = FakeGateway()
        gateway.drafts = drafts

        await controller(gateway, drafts).save(FORM)

        assert gateway.draft_at_call == FORM

    @pytest.mark.asyncio
    async def test_success_clears_both_slots(self, drafts: DraftStore) -> None:
        """Test that a save clears the creation and edit drafts and advances."""
        drafts.save(DraftContext.edit(ACCOUNT), {"username": "older"})
        save_controller = controller(FakeGateway(), drafts)

        outcome = await save_controller.save(FORM)

        assert outcome.ok
        assert outcome.step == SHARED_STEP
        assert outcome.profile["username"] == "alice"
        assert drafts.load(DraftContext.creation()) is None
        assert drafts.load(DraftContext.edit(ACCOUNT)) is None
        assert save_controller.account_id == ACCOUNT

    @pytest.mark.asyncio
    async def test_timeout_restores_draft(self, drafts: DraftStore) -> None:
        """Test that a slow save times out and the typed values survive."""
        save_controller = controller(FakeGateway(delay=1.0), drafts, account_id=ACCOUNT, timeout=0.01)

        outcome = await save_controller.save(FORM)

        assert outcome.status is SaveStatus.TIMED_OUT
        assert outcome.form == FORM
        assert drafts.load(DraftContext.edit(ACCOUNT)) == FORM
        assert save_controller.restore() == FORM

    @pytest.mark.asyncio
    async def test_network_error_restores_draft(self, drafts: DraftStore) -> None:
        gateway = FakeGateway(result=httpx.ConnectError("connection refused"))

        outcome = await controller(gateway, drafts).save(FORM)

        assert outcome.status is SaveStatus.NETWORK_ERROR
        assert outcome.form == FORM
        assert drafts.load(DraftContext.creation()) == FORM

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code,expected",
        [
            (409, SaveStatus.HANDLE_TAKEN),
            (403, SaveStatus.PERMISSION_DENIED),
            (401, SaveStatus.SESSION_EXPIRED),
            (503, SaveStatus.NETWORK_ERROR),
            (500, SaveStatus.FAILED),
        ],
    )
    async def test_server_errors_are_mapped(
        self, drafts: DraftStore, status_code: int, expected: SaveStatus
    ) -> None:
        gateway = FakeGateway(result=GatewayError(status_code, "Something broke"))

        outcome = await controller(gateway, drafts).save(FORM)

        assert outcome.status is expected
        assert not outcome.ok
        assert drafts.load(DraftContext.creation()) == FORM

    @pytest.mark.asyncio
    async def test_server_validation_message_is_shown(self, drafts: DraftStore) -> None:
        gateway = FakeGateway(result=GatewayError(400, "Bio must be at most 1000 characters"))

        outcome = await controller(gateway, drafts).save(FORM)

        assert outcome.status is SaveStatus.INVALID
        assert outcome.message == "Bio must be at most 1000 characters"

    def test_update_field_mirrors_draft(self, drafts: DraftStore) -> None:
        save_controller = controller(FakeGateway(), drafts, account_id=ACCOUNT)

        form = save_controller.update_field(FORM, "bio", "Hello")

        assert form["bio"] == "Hello"
        assert save_controller.restore() == form

    @pytest.mark.asyncio
    async def test_end_to_end_against_profile_service(self, drafts: DraftStore, fake_store: Any) -> None:
        """Test a first save through the real service, then a published handle."""
        service = ProfileService(client=fake_store)
        save_controller = controller(ServiceGateway(service), drafts)

        outcome = await save_controller.save(FORM)

        assert outcome.ok
        assert outcome.profile["username"] == "alice"
        assert outcome.profile["email_verified"] is True
        fetched = await service.fetch_profile_by_username("ALICE")
        assert fetched.found
        assert fetched.data["id"] == ACCOUNT


class TestFaceDescriptorSink:
    @pytest.mark.asyncio
    async def test_sink_sends_descriptor_only(self) -> None:
        gateway = FakeGateway()

        await face_descriptor_sink(gateway, SESSION)([0.5] * 128)

        assert gateway.descriptors == [[0.5] * 128]
        assert gateway.saved == []


class TestSyncPendingReferral:
    """Tests for sending the stored referral marker."""

    @pytest.mark.asyncio
    async def test_nothing_pending(self) -> None:
        assert await sync_pending_referral(MemoryDraftStorage(), FakeGateway(), SESSION) is None

    @pytest.mark.asyncio
    async def test_recorded_clears_marker(self) -> None:
        storage = MemoryDraftStorage()
        remember_referral(storage, "bob")
        gateway = FakeGateway()

        outcome = await sync_pending_referral(storage, gateway, SESSION)

        assert outcome is ReferralOutcome.RECORDED
        assert gateway.referrals == ["bob"]
        assert pending_referral(storage) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [httpx.ConnectError("offline"), GatewayError(503, "down"), GatewayError(401, "expired")],
    )
    async def test_transient_failure_keeps_marker(self, failure: Exception) -> None:
        storage = MemoryDraftStorage()
        remember_referral(storage, "bob")
        gateway = FakeGateway()
        gateway.referral_result = failure

        outcome = await sync_pending_referral(storage, gateway, SESSION)

        assert outcome is ReferralOutcome.PENDING
        assert pending_referral(storage) == "bob"

    @pytest.mark.asyncio
    async def test_rejected_referral_clears_marker(self) -> None:
        storage = MemoryDraftStorage()
        remember_referral(storage, "bob")
        gateway = FakeGateway()
        gateway.referral_result = GatewayError(400, "Invalid payload")

        outcome = await sync_pending_referral(storage, gateway, SESSION)

        assert outcome is ReferralOutcome.PERMANENTLY_FAILED
        assert pending_referral(storage) is None


class TestHttpProfileGateway:
    """Tests for the HTTP gateway using a mock transport."""

    @pytest.mark.asyncio
    async def test_save_profile_posts_with_bearer(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(200, json={"profile": {"id": ACCOUNT, **body}})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            gateway = HttpProfileGateway(base_url="http://api.test/", client=client, timeout=5)
            profile = await gateway.save_profile(SESSION, FORM)

        assert profile["username"] == "alice"
        assert seen[0].url.path == "/profile/save"
        assert seen[0].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_error_status_raises_gateway_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(409, json={"error": "conflict", "message": "Username already taken"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            gateway = HttpProfileGateway(base_url="http://api.test", client=client, timeout=5)
            with pytest.raises(GatewayError) as exc_info:
                await gateway.save_profile(SESSION, FORM)

        assert exc_info.value.status_code == 409
        assert exc_info.value.message == "Username already taken"

    @pytest.mark.asyncio
    async def test_record_referral_parses_outcome(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/referrals"
            return httpx.Response(200, json={"outcome": "pending", "retry": True})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            gateway = HttpProfileGateway(base_url="http://api.test", client=client, timeout=5)
            outcome = await gateway.record_referral(SESSION, "bob")

        assert outcome is ReferralOutcome.PENDING
