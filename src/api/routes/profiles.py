"""Profile API routes."""

import logging

from fastapi import APIRouter, Response

from src.api.deps import CurrentUser, Schema, StoreClient, UserStoreClient
from src.api.middleware.error_handler import NotFoundError, ServiceUnavailableError
from src.core.config import get_settings
from src.schemas.profile import (
    AvatarUrlUpdate,
    FaceDescriptorUpdate,
    FaceVerifyRequest,
    FaceVerifyResponse,
    MyProfileResponse,
    ProfileResponse,
    ProfileSaveRequest,
    ProfileSaveResponse,
    PublicProfile,
)
from src.services.channel_links import build_vcard, to_public_profile
from src.services.face_recognition import euclidean_distance, is_match
from src.services.profile_service import ProfileService, has_published_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


@router.post(
    "/save",
    response_model=ProfileSaveResponse,
    summary="Save current user's profile",
    description="Creates or replaces the authenticated user's profile. Username is required.",
    responses={
        400: {"description": "Invalid payload"},
        401: {"description": "No or invalid session"},
        403: {"description": "Write rejected by row policy"},
        409: {"description": "Username already taken"},
    },
)
async def save_profile(
    data: ProfileSaveRequest,
    user: CurrentUser,
    client: UserStoreClient,
    schema: Schema,
) -> ProfileSaveResponse:
    """Save the authenticated user's profile.

    Args:
        data: The full candidate field set.
        user: The authenticated user context.
        client: Database client acting as the caller.
        schema: Profile schema descriptor.

    Returns:
        ProfileSaveResponse: The stored row.
    """
    service = ProfileService(client=client, schema=schema)
    profile = await service.save_profile(user, data)
    return ProfileSaveResponse(profile=ProfileResponse.from_row(profile))


@router.get(
    "/me",
    response_model=MyProfileResponse,
    summary="Get current user's profile",
    description="Returns the profile, or null when the account has none yet.",
    responses={503: {"description": "Profile could not be read, retry"}},
)
async def get_my_profile(user: CurrentUser, client: StoreClient, schema: Schema) -> MyProfileResponse:
    """Get the authenticated user's profile.

    A missing row is a normal answer (the creation flow); a failed read
    is a 503 so the client retries instead of starting over.

    Raises:
        ServiceUnavailableError: If the read failed.
    """
    service = ProfileService(client=client, schema=schema)
    result = await service.fetch_profile_by_user_id(user.user_id)
    if result.failed:
        raise ServiceUnavailableError("Could not load your profile. Please try again.")
    if result.absent:
        return MyProfileResponse(profile=None, has_profile=False)
    return MyProfileResponse(
        profile=ProfileResponse.from_row(result.data),
        has_profile=has_published_username(result.data),
    )


@router.get(
    "/u/{username}",
    response_model=PublicProfile,
    summary="Get a public profile",
    description="Public view of a profile by username; only visible channels are included.",
    responses={404: {"description": "No published profile with this username"}},
)
async def get_public_profile(username: str, client: StoreClient, schema: Schema) -> PublicProfile:
    """Get the public projection of a profile.

    Raises:
        NotFoundError: If no published profile matches.
        ServiceUnavailableError: If the read failed.
    """
    return await _load_public_profile(ProfileService(client=client, schema=schema), username)


@router.get(
    "/u/{username}/vcard",
    summary="Download a contact card",
    description="vCard 3.0 built from the public profile; only visible channels are included.",
    response_class=Response,
    responses={
        200: {"content": {"text/vcard": {}}},
        404: {"description": "No published profile with this username"},
    },
)
async def get_public_vcard(username: str, client: StoreClient, schema: Schema) -> Response:
    """Return the public profile as a downloadable vCard."""
    profile = await _load_public_profile(ProfileService(client=client, schema=schema), username)
    site_url = get_settings().public_site_url.rstrip("/")
    profile_url = f"{site_url}/p/{profile.username}" if site_url else None
    return Response(
        content=build_vcard(profile, profile_url),
        media_type="text/vcard; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{profile.username}.vcf"'},
    )


async def _load_public_profile(service: ProfileService, username: str) -> PublicProfile:
    result = await service.fetch_profile_by_username(username)
    if result.failed:
        raise ServiceUnavailableError("Could not load this profile. Please try again.")
    if result.absent or not has_published_username(result.data):
        raise NotFoundError("Profile not found")
    return to_public_profile(result.data)


@router.post(
    "/avatar",
    response_model=ProfileSaveResponse,
    summary="Set avatar URL",
    description="Avatar-only update after an upload. No other column is written.",
    responses={404: {"description": "No profile row yet"}},
)
async def update_avatar(
    data: AvatarUrlUpdate,
    user: CurrentUser,
    client: UserStoreClient,
    schema: Schema,
) -> ProfileSaveResponse:
    """Point the profile at a newly uploaded avatar.

    Raises:
        NotFoundError: If the account has no profile row yet.
    """
    service = ProfileService(client=client, schema=schema)
    profile = await service.update_avatar_url(user.user_id, data.avatar_url.strip())
    if not profile:
        raise NotFoundError("Create your profile before setting an avatar")
    return ProfileSaveResponse(profile=ProfileResponse.from_row(profile))


@router.post(
    "/face-descriptor",
    response_model=ProfileSaveResponse,
    summary="Store face descriptor",
    description="Descriptor-only update used by face enrollment. No other column is written.",
)
async def save_face_descriptor(
    data: FaceDescriptorUpdate,
    user: CurrentUser,
    client: UserStoreClient,
    schema: Schema,
) -> ProfileSaveResponse:
    """Store the enrolled face descriptor.

    Raises:
        NotFoundError: If the account has no profile row yet.
    """
    service = ProfileService(client=client, schema=schema)
    profile = await service.update_face_descriptor(user.user_id, data.descriptor)
    if not profile:
        raise NotFoundError("Create your profile before enrolling a face")
    logger.info("Face descriptor enrolled for %s", user.user_id)
    return ProfileSaveResponse(profile=ProfileResponse.from_row(profile))


@router.post(
    "/face/verify",
    response_model=FaceVerifyResponse,
    summary="Verify a face descriptor",
    description="Compares a freshly captured descriptor with the enrolled one.",
)
async def verify_face(
    data: FaceVerifyRequest,
    user: CurrentUser,
    client: StoreClient,
    schema: Schema,
) -> FaceVerifyResponse:
    """Compare a descriptor with the stored one.

    Returns:
        FaceVerifyResponse: match false with enrolled false when nothing
            is stored yet.
    """
    service = ProfileService(client=client, schema=schema)
    stored = await service.get_face_descriptor(user.user_id)
    if not stored:
        return FaceVerifyResponse(match=False, enrolled=False)

    distance = euclidean_distance(stored, data.descriptor)
    matched = is_match(stored, data.descriptor)
    if not matched:
        logger.warning("Face verification failed for %s (distance %.3f)", user.user_id, distance)
    return FaceVerifyResponse(match=matched, distance=round(distance, 4))
