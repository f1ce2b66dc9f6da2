"""Referral recording business logic."""

import logging
import re
from enum import Enum
from uuid import UUID

from supabase import Client
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from src.core.config import get_settings
from src.core.store_errors import StoreErrorKind, classify_store_error, store_error_message
from src.core.supabase import get_supabase_client

logger = logging.getLogger(__name__)

REFERRER_PATTERN = re.compile(r"^[a-z0-9_-]{3,30}$")
MAX_WAIT_SECONDS = 5


class ReferralOutcome(str, Enum):
    """Result of one attempt to record a referral.

    PENDING means a transient failure: keep the local marker and retry
    later. RECORDED and PERMANENTLY_FAILED both end the retry cycle.
    """

    RECORDED = "recorded"
    PENDING = "pending"
    PERMANENTLY_FAILED = "permanently_failed"

    @property
    def should_retry(self) -> bool:
        return self is ReferralOutcome.PENDING


class InvalidReferralError(Exception):
    """The referral can never be recorded (unknown referrer, self-referral)."""


def normalize_referrer(value: str | None) -> str | None:
    """Lowercase and validate a referrer handle; None if unusable."""
    if not value:
        return None
    cleaned = value.strip().lower()
    return cleaned if REFERRER_PATTERN.match(cleaned) else None


def _is_transient(exc: BaseException) -> bool:
    return classify_store_error(exc) is StoreErrorKind.TRANSIENT


class ReferralService:
    """Service for the referrals table (one row per referred account)."""

    def __init__(
        self,
        client: Client | None = None,
        max_attempts: int | None = None,
        wait_multiplier: float = 0.5,
    ) -> None:
        """Initialize referral service.

        Args:
            client: Supabase client; defaults to the shared database client.
            max_attempts: Attempts for transient failures; defaults to settings.
            wait_multiplier: Exponential backoff multiplier in seconds.
        """
        self.client = client or get_supabase_client()
        self.max_attempts = max_attempts or get_settings().referral_max_attempts
        self.wait_multiplier = wait_multiplier

    def _check_referrer(self, referred_user_id: str, referrer: str) -> None:
        response = (
            self.client.table("profiles")
            .select("id")
            .ilike("username", referrer.replace("_", "\\_"))
            .maybe_single()
            .execute()
        )
        row = response.data if response is not None else None
        if not row:
            raise InvalidReferralError(f"No profile with username {referrer}")
        if str(row.get("id")) == referred_user_id:
            raise InvalidReferralError("An account cannot refer itself")

    async def record_referral(self, referred_user_id: UUID | str, referrer_username: str) -> ReferralOutcome:
        """Record who referred a new account.

        Idempotent: upserts on referred_user_id, so repeating a recorded
        referral is harmless.

        Args:
            referred_user_id: The new account.
            referrer_username: Handle of the referring profile.

        Returns:
            ReferralOutcome: What happened and whether to retry later.
        """
        referrer = normalize_referrer(referrer_username)
        if referrer is None:
            logger.info("Dropping referral with invalid referrer %r", referrer_username)
            return ReferralOutcome.PERMANENTLY_FAILED

        referred = str(referred_user_id)
        row = {
            "referred_user_id": referred,
            "referrer_username": referrer,
        }

        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.wait_multiplier, max=MAX_WAIT_SECONDS),
                reraise=True,
            ):
                with attempt:
                    self._check_referrer(referred, referrer)
                    self.client.table("referrals").upsert(row, on_conflict="referred_user_id").execute()
        except InvalidReferralError as e:
            logger.info("Dropping referral of %s: %s", referred, e)
            return ReferralOutcome.PERMANENTLY_FAILED
        except Exception as e:
            if _is_transient(e):
                logger.warning(
                    "Referral for %s still pending after %d attempts: %s",
                    referred,
                    self.max_attempts,
                    e,
                )
                return ReferralOutcome.PENDING
            logger.error(
                "Referral for %s failed permanently: %s",
                referred,
                store_error_message(e),
            )
            return ReferralOutcome.PERMANENTLY_FAILED

        logger.info("Recorded referral of %s by %s", referred, referrer)
        return ReferralOutcome.RECORDED
