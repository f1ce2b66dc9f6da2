"""Profile Pydantic schemas for API request/response models."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.services.face_recognition import DESCRIPTOR_LENGTH


class ProfileLinkPayload(BaseModel):
    """A contact link row synced to profile_links after a save."""

    platform: str = Field(..., min_length=1, max_length=32, description="Platform key, e.g. 'instagram'")
    url: str = Field(..., min_length=1, max_length=2048, description="Link value or URL")
    sort_order: int | None = Field(default=None, ge=0, description="Display position")


class ProfileFields(BaseModel):
    """Editable profile fields shared by save requests and drafts.

    email_verified and face_descriptor are deliberately absent: the
    former is derived from the session, the latter has its own update path.
    """

    model_config = ConfigDict(extra="ignore")

    username: str | None = Field(default=None, max_length=64, description="Public handle")
    display_name: str | None = Field(default=None, max_length=255)
    bio: str | None = Field(default=None, max_length=1000)
    avatar_url: str | None = Field(default=None, max_length=2048)

    phone: str | None = None
    email: str | None = None
    whatsapp: str | None = None
    facebook: str | None = None
    instagram: str | None = None
    tiktok: str | None = None
    telegram: str | None = None
    linkedin: str | None = None
    x: str | None = None
    website: str | None = None

    phone_public: bool | None = None
    email_public: bool | None = None
    whatsapp_public: bool | None = None
    facebook_public: bool | None = None
    instagram_public: bool | None = None
    tiktok_public: bool | None = None
    telegram_public: bool | None = None
    linkedin_public: bool | None = None
    x_public: bool | None = None
    website_public: bool | None = None


class ProfileSaveRequest(ProfileFields):
    """Body of POST /profile/save: the full candidate field set."""

    links: list[ProfileLinkPayload] = Field(default_factory=list, description="Optional link rows to sync")

    def to_payload(self) -> dict[str, Any]:
        """Profile columns to write, without the link rows."""
        return self.model_dump(exclude={"links"})


class ProfileResponse(BaseModel):
    """A stored profile row as returned to its owner."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: UUID
    username: str | None = None
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None

    phone: str | None = None
    email: str | None = None
    whatsapp: str | None = None
    facebook: str | None = None
    instagram: str | None = None
    tiktok: str | None = None
    telegram: str | None = None
    linkedin: str | None = None
    x: str | None = None
    website: str | None = None

    phone_public: bool | None = None
    email_public: bool | None = None
    whatsapp_public: bool | None = None
    facebook_public: bool | None = None
    instagram_public: bool | None = None
    tiktok_public: bool | None = None
    telegram_public: bool | None = None
    linkedin_public: bool | None = None
    x_public: bool | None = None
    website_public: bool | None = None

    email_verified: bool | None = None
    face_enrolled: bool = Field(default=False, description="Whether a face descriptor is stored")
    updated_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "ProfileResponse":
        """Build a response from a store row, hiding the raw descriptor."""
        data = {key: value for key, value in row.items() if key != "face_descriptor"}
        data["face_enrolled"] = bool(row.get("face_descriptor"))
        return cls(**data)


class ProfileSaveResponse(BaseModel):
    """Response of POST /profile/save."""

    profile: ProfileResponse


class MyProfileResponse(BaseModel):
    """Response of GET /profile/me; profile is null when none exists yet."""

    profile: ProfileResponse | None = None
    has_profile: bool = Field(default=False, description="True when a published handle exists")


class PublicChannel(BaseModel):
    """A publicly visible contact channel."""

    key: str
    value: str
    url: str


class PublicProfile(BaseModel):
    """Public projection of a profile: only visible, non-empty channels."""

    username: str
    display_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    channels: list[PublicChannel] = Field(default_factory=list)


class FaceDescriptorUpdate(BaseModel):
    """Body of POST /profile/face-descriptor."""

    descriptor: list[float] = Field(..., description="128-dimensional face descriptor")

    @field_validator("descriptor")
    @classmethod
    def check_length(cls, value: list[float]) -> list[float]:
        if len(value) != DESCRIPTOR_LENGTH:
            raise ValueError(f"descriptor must have {DESCRIPTOR_LENGTH} values")
        return value


class FaceVerifyRequest(FaceDescriptorUpdate):
    """Body of POST /profile/face/verify."""


class FaceVerifyResponse(BaseModel):
    """Result of comparing a descriptor against the enrolled one."""

    match: bool
    distance: float | None = None
    enrolled: bool = True


class AvatarUrlUpdate(BaseModel):
    """Body of POST /profile/avatar."""

    avatar_url: str = Field(..., min_length=1, max_length=2048, description="Public URL of the uploaded image")


class AvatarUploadResponse(BaseModel):
    """Response of POST /avatar/upload."""

    url: str


class AccountDeleteResponse(BaseModel):
    """Response of POST /account/delete."""

    success: bool = True
    message: str = "Account deleted successfully"


class ReferralRequest(BaseModel):
    """Body of POST /referrals."""

    referrer_username: str = Field(..., min_length=1, max_length=64)


class ReferralResponse(BaseModel):
    """Outcome of recording a referral."""

    outcome: str
    retry: bool = Field(description="Whether the client should keep its pending marker and retry later")
