"""Client-side coordination of a user-initiated profile save.

The controller validates the form, checks the local session still
belongs to the account being edited, writes the draft before any
network call, then makes exactly one bounded save request. Timeouts and
network failures hand back the last persisted draft so nothing typed is
lost.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Sequence

import httpx

from src.core.config import get_settings
from src.services.draft_store import (
    DraftContext,
    DraftStorage,
    DraftStore,
    forget_referral,
    pending_referral,
)
from src.services.face_capture import DescriptorSink
from src.services.profile_service import username_error
from src.services.referral_service import ReferralOutcome

logger = logging.getLogger(__name__)

SHARED_STEP = "shared"
EDIT_STEP = "edit"


class SaveStatus(str, Enum):
    """How a save attempt ended."""

    SAVED = "saved"
    INVALID = "invalid"
    SESSION_EXPIRED = "session_expired"
    TIMED_OUT = "timed_out"
    NETWORK_ERROR = "network_error"
    HANDLE_TAKEN = "handle_taken"
    PERMISSION_DENIED = "permission_denied"
    FAILED = "failed"

    @property
    def restores_draft(self) -> bool:
        return self in (SaveStatus.TIMED_OUT, SaveStatus.NETWORK_ERROR)


_STATUS_MESSAGES = {
    SaveStatus.SESSION_EXPIRED: "Your session has expired. Please sign in again.",
    SaveStatus.TIMED_OUT: "Saving took too long. Your changes are kept, try again.",
    SaveStatus.NETWORK_ERROR: "Network error. Your changes are kept, try again.",
    SaveStatus.HANDLE_TAKEN: "Username already taken. Choose a different one.",
    SaveStatus.PERMISSION_DENIED: "You don't have permission to update this profile. Try signing in again.",
    SaveStatus.FAILED: "Profile save failed.",
}

_HTTP_STATUS_MAP = {
    400: SaveStatus.INVALID,
    401: SaveStatus.SESSION_EXPIRED,
    403: SaveStatus.PERMISSION_DENIED,
    409: SaveStatus.HANDLE_TAKEN,
    502: SaveStatus.NETWORK_ERROR,
    503: SaveStatus.NETWORK_ERROR,
    504: SaveStatus.NETWORK_ERROR,
}


@dataclass
class SaveOutcome:
    """Result handed back to the form."""

    status: SaveStatus
    message: str = ""
    profile: dict[str, Any] | None = None
    form: dict[str, Any] | None = None
    step: str = EDIT_STEP

    @property
    def ok(self) -> bool:
        return self.status is SaveStatus.SAVED


@dataclass(frozen=True)
class LocalSession:
    """The signed-in session as the client sees it."""

    account_id: str
    access_token: str = field(repr=False)


class SessionProvider(Protocol):
    async def get_session(self) -> LocalSession | None:
        ...


class GatewayError(Exception):
    """The server answered a request with an error status."""

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}")


class ProfileGateway(Protocol):
    """Remote operations the client performs for a signed-in account."""

    async def save_profile(self, session: LocalSession, fields: dict[str, Any]) -> dict[str, Any]:
        ...

    async def save_face_descriptor(self, session: LocalSession, descriptor: Sequence[float]) -> dict[str, Any]:
        ...

    async def record_referral(self, session: LocalSession, referrer_username: str) -> ReferralOutcome:
        ...


class HttpProfileGateway:
    """ProfileGateway over the HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout or settings.profile_save_timeout_seconds
        self._client = client

    async def _post(self, path: str, session: LocalSession, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {session.access_token}"}
        url = f"{self.base_url}{path}"
        if self._client is not None:
            response = await self._client.post(url, json=payload, headers=headers, timeout=self.timeout)
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(url, json=payload, headers=headers, timeout=self.timeout)

        if response.status_code >= 400:
            raise GatewayError(response.status_code, _error_message(response))
        return response.json()

    async def save_profile(self, session: LocalSession, fields: dict[str, Any]) -> dict[str, Any]:
        body = await self._post("/profile/save", session, fields)
        return body.get("profile") or {}

    async def save_face_descriptor(self, session: LocalSession, descriptor: Sequence[float]) -> dict[str, Any]:
        body = await self._post("/profile/face-descriptor", session, {"descriptor": list(descriptor)})
        return body.get("profile") or {}

    async def record_referral(self, session: LocalSession, referrer_username: str) -> ReferralOutcome:
        body = await self._post("/referrals", session, {"referrer_username": referrer_username})
        return ReferralOutcome(body["outcome"])


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body.get("error") or body)
    return str(body)


class ProfileSaveController:
    """Drives one profile form, for creation or for edits of one account."""

    def __init__(
        self,
        gateway: ProfileGateway,
        sessions: SessionProvider,
        drafts: DraftStore,
        account_id: str | None = None,
        timeout: float | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            gateway: Remote save operations.
            sessions: Source of the current local session.
            drafts: Draft cache for the form.
            account_id: Account being edited; None for the creation flow.
            timeout: Seconds allowed for the save round trip.
        """
        self.gateway = gateway
        self.sessions = sessions
        self.drafts = drafts
        self.account_id = account_id
        self.timeout = timeout or get_settings().profile_save_timeout_seconds

    @property
    def context(self) -> DraftContext:
        if self.account_id:
            return DraftContext.edit(self.account_id)
        return DraftContext.creation()

    def restore(self) -> dict[str, Any] | None:
        """Form state to show when the form opens."""
        return self.drafts.load(self.context)

    def update_field(self, form: dict[str, Any], name: str, value: Any) -> dict[str, Any]:
        """Apply one field change and mirror the form into the draft."""
        updated = {**form, name: value}
        self.drafts.save(self.context, updated)
        return updated

    async def save(self, form: dict[str, Any]) -> SaveOutcome:
        """Run one user-initiated save.

        Args:
            form: Current form fields.

        Returns:
            SaveOutcome: SAVED with the stored row and step "shared", or a
                failure status with the form to show.
        """
        problem = username_error(form.get("username"))
        if problem:
            return SaveOutcome(SaveStatus.INVALID, problem, form=form)

        session = await self.sessions.get_session()
        if session is None or (self.account_id and session.account_id != self.account_id):
            logger.info("Save refused: session missing or for another account")
            return self._failure(SaveStatus.SESSION_EXPIRED, form)

        self.drafts.save(self.context, form)

        try:
            profile = await asyncio.wait_for(
                self.gateway.save_profile(session, form),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning("Profile save timed out after %.1fs", self.timeout)
            return self._failure(SaveStatus.TIMED_OUT, form)
        except httpx.TransportError as e:
            logger.warning("Profile save network error: %s", e)
            return self._failure(SaveStatus.NETWORK_ERROR, form)
        except GatewayError as e:
            save_status = _HTTP_STATUS_MAP.get(e.status_code, SaveStatus.FAILED)
            logger.warning("Profile save rejected (%d): %s", e.status_code, e.message)
            return self._failure(save_status, form, e.message)

        self.drafts.clear(DraftContext.creation())
        self.drafts.clear(DraftContext.edit(session.account_id))
        self.account_id = session.account_id
        logger.info("Profile saved for %s", session.account_id)
        return SaveOutcome(SaveStatus.SAVED, "Profile saved", profile=profile, step=SHARED_STEP)

    def _failure(self, save_status: SaveStatus, form: dict[str, Any], detail: str | None = None) -> SaveOutcome:
        shown = form
        if save_status.restores_draft:
            shown = self.drafts.load(self.context) or form
        if save_status in (SaveStatus.INVALID, SaveStatus.FAILED) and detail:
            message = detail
        else:
            message = _STATUS_MESSAGES.get(save_status, detail or "")
        return SaveOutcome(save_status, message, form=shown)


def face_descriptor_sink(gateway: ProfileGateway, session: LocalSession) -> DescriptorSink:
    """Descriptor-only persistence for an enrollment session."""

    async def save(descriptor: list[float]) -> dict[str, Any]:
        return await gateway.save_face_descriptor(session, descriptor)

    return save


async def sync_pending_referral(
    storage: DraftStorage,
    gateway: ProfileGateway,
    session: LocalSession,
) -> ReferralOutcome | None:
    """Send the stored referral marker, if any.

    The marker is kept only while the outcome is PENDING.

    Returns:
        ReferralOutcome | None: None when there was nothing to send.
    """
    referrer = pending_referral(storage)
    if referrer is None:
        return None

    try:
        outcome = await gateway.record_referral(session, referrer)
    except httpx.TransportError as e:
        logger.warning("Referral sync deferred: %s", e)
        return ReferralOutcome.PENDING
    except GatewayError as e:
        if e.status_code >= 500 or e.status_code == 401:
            logger.warning("Referral sync deferred (%d): %s", e.status_code, e.message)
            return ReferralOutcome.PENDING
        outcome = ReferralOutcome.PERMANENTLY_FAILED

    if not outcome.should_retry:
        forget_referral(storage)
    return outcome
