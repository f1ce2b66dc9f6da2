"""Account management routes."""

from fastapi import APIRouter

from src.api.deps import CurrentUser, StoreClient
from src.schemas.profile import AccountDeleteResponse
from src.services.account_service import AccountService

router = APIRouter(prefix="/account", tags=["account"])


@router.post(
    "/delete",
    response_model=AccountDeleteResponse,
    summary="Delete account",
    description="Deletes profile links, the profile and the account itself.",
    responses={500: {"description": "Account could not be deleted"}},
)
async def delete_account(user: CurrentUser, client: StoreClient) -> AccountDeleteResponse:
    """Delete the authenticated user's account."""
    service = AccountService(client=client)
    await service.delete_account(user.user_id)
    return AccountDeleteResponse()
