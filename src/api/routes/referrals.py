"""Referral routes."""

from fastapi import APIRouter

from src.api.deps import CurrentUser, StoreClient
from src.schemas.profile import ReferralRequest, ReferralResponse
from src.services.referral_service import ReferralService

router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.post(
    "",
    response_model=ReferralResponse,
    summary="Record referral",
    description="Records which username referred the signed-in account. Safe to repeat.",
)
async def record_referral(
    data: ReferralRequest,
    user: CurrentUser,
    client: StoreClient,
) -> ReferralResponse:
    """Record the referrer of the authenticated account.

    Always 200; the outcome tells the client whether to keep its
    pending marker.
    """
    service = ReferralService(client=client)
    outcome = await service.record_referral(user.user_id, data.referrer_username)
    return ReferralResponse(outcome=outcome.value, retry=outcome.should_retry)
