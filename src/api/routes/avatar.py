"""Avatar upload route."""

from fastapi import APIRouter, UploadFile

from src.api.deps import CurrentUser, StoreClient
from src.api.middleware.error_handler import ValidationError
from src.schemas.profile import AvatarUploadResponse
from src.services.avatar_service import AvatarService

router = APIRouter(prefix="/avatar", tags=["avatar"])


@router.post(
    "/upload",
    response_model=AvatarUploadResponse,
    summary="Upload avatar",
    description="Multipart upload in field 'avatar' or 'file'. Images only, up to 5MB.",
    responses={
        400: {"description": "Missing, non-image or oversized file"},
        502: {"description": "Storage bucket missing"},
    },
)
async def upload_avatar(
    user: CurrentUser,
    client: StoreClient,
    avatar: UploadFile | None = None,
    file: UploadFile | None = None,
) -> AvatarUploadResponse:
    """Store the user's avatar and return its public URL.

    The profile row is not touched; the client saves the URL with the
    rest of the form or through POST /profile/avatar.
    """
    upload = avatar or file
    if upload is None:
        raise ValidationError("No image file provided. Use form field 'avatar' or 'file'.")

    data = await upload.read()
    service = AvatarService(client=client)
    url = await service.upload_avatar(user.user_id, upload.filename, upload.content_type, data)
    return AvatarUploadResponse(url=url)
