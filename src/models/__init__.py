"""Database model type definitions."""

from src.models.profile import CHANNELS, Profile, ProfileLink, Referral

__all__ = [
    "CHANNELS",
    "Profile",
    "ProfileLink",
    "Referral",
]
