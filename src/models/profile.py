"""Profile model type definitions for database operations."""

from typing import TypedDict

# Contact channels, in display order. Each has a paired "<channel>_public" flag.
CHANNELS: tuple[str, ...] = (
    "phone",
    "email",
    "whatsapp",
    "facebook",
    "instagram",
    "tiktok",
    "telegram",
    "linkedin",
    "x",
    "website",
)

PUBLIC_FLAG_SUFFIX = "_public"


def public_flag(channel: str) -> str:
    """Return the visibility flag column paired with a channel."""
    return f"{channel}{PUBLIC_FLAG_SUFFIX}"


class Profile(TypedDict, total=False):
    """Profile table row representation.

    One row per account; ``id`` is the auth user id.
    """

    id: str
    username: str | None
    display_name: str | None
    bio: str | None
    avatar_url: str | None
    phone: str | None
    email: str | None
    whatsapp: str | None
    facebook: str | None
    instagram: str | None
    tiktok: str | None
    telegram: str | None
    linkedin: str | None
    x: str | None
    website: str | None
    phone_public: bool | None
    email_public: bool | None
    whatsapp_public: bool | None
    facebook_public: bool | None
    instagram_public: bool | None
    tiktok_public: bool | None
    telegram_public: bool | None
    linkedin_public: bool | None
    x_public: bool | None
    website_public: bool | None
    email_verified: bool | None
    face_descriptor: list[float] | None
    updated_at: str


class ProfileLink(TypedDict):
    """profile_links table row."""

    user_id: str
    platform: str
    url: str
    sort_order: int


class Referral(TypedDict):
    """referrals table row, at most one per referred account."""

    referred_user_id: str
    referrer_username: str
