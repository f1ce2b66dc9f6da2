"""Contact channel URLs and the public profile projection."""

import re
from typing import Any, Callable

from src.models.profile import CHANNELS, public_flag
from src.schemas.profile import PublicChannel, PublicProfile


def _strip_at(value: str) -> str:
    return value.strip().lstrip("@").strip()


def _only_digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def _ensure_scheme(value: str) -> str:
    value = value.strip()
    if value.startswith("http://") or value.startswith("https://"):
        return value
    return f"https://{value}"


_URL_BUILDERS: dict[str, Callable[[str], str]] = {
    "phone": lambda v: f"tel:{_only_digits(v)}",
    "email": lambda v: f"mailto:{v.strip()}",
    "whatsapp": lambda v: f"https://wa.me/{_only_digits(v)}",
    "facebook": lambda v: f"https://facebook.com/{_strip_at(v)}",
    "instagram": lambda v: f"https://instagram.com/{_strip_at(v)}",
    "tiktok": lambda v: f"https://tiktok.com/@{_strip_at(v)}",
    "telegram": lambda v: f"https://t.me/{_strip_at(v)}",
    "linkedin": lambda v: f"https://linkedin.com/in/{_strip_at(v)}",
    "x": lambda v: f"https://x.com/{_strip_at(v)}",
    "website": _ensure_scheme,
}


def build_channel_url(channel: str, value: str) -> str:
    """Turn a stored channel value into a link.

    Values that are already full http(s) URLs are kept as they are,
    except for phone and email which always get their own scheme.
    """
    if channel not in ("phone", "email") and value.strip().startswith(("http://", "https://")):
        return value.strip()
    builder = _URL_BUILDERS.get(channel, _ensure_scheme)
    return builder(value)


def is_channel_visible(row: dict[str, Any], channel: str) -> bool:
    """A channel is shown only if it has a value and its flag is on.

    An empty value hides the channel even when its flag is set.
    """
    value = row.get(channel)
    if not isinstance(value, str) or not value.strip():
        return False
    return row.get(public_flag(channel)) is True


def to_public_profile(row: dict[str, Any]) -> PublicProfile:
    """Project a stored row onto what a visitor may see."""
    channels = [
        PublicChannel(
            key=channel,
            value=row[channel].strip(),
            url=build_channel_url(channel, row[channel]),
        )
        for channel in CHANNELS
        if is_channel_visible(row, channel)
    ]
    return PublicProfile(
        username=row["username"],
        display_name=row.get("display_name"),
        bio=row.get("bio"),
        avatar_url=row.get("avatar_url"),
        channels=channels,
    )


# Channels carried into a saved contact card, with their vCard property.
_VCARD_PROPERTIES: tuple[tuple[str, str], ...] = (
    ("phone", "TEL;TYPE=CELL"),
    ("email", "EMAIL"),
    ("whatsapp", "TEL;TYPE=WhatsApp"),
    ("website", "URL"),
)


def escape_vcard_text(value: str) -> str:
    """Escape a vCard 3.0 text value."""
    return (
        value.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
        .replace("\r", "")
    )


def build_vcard(profile: PublicProfile, profile_url: str | None = None) -> str:
    """Build a vCard 3.0 contact card from a public profile.

    Only channels present in the projection are written, so hidden or
    empty channels never leak into the card.

    Args:
        profile: Public projection of the profile.
        profile_url: Link to the public profile page, if known.

    Returns:
        str: CRLF-separated vCard text.
    """
    name = (profile.display_name or "").strip() or profile.username or "Contact"
    given, _, family = name.partition(" ")
    lines = [
        "BEGIN:VCARD",
        "VERSION:3.0",
        f"FN:{escape_vcard_text(name)}",
        f"N:{escape_vcard_text(family.strip())};{escape_vcard_text(given)};;;",
    ]

    values = {channel.key: channel for channel in profile.channels}
    for key, prop in _VCARD_PROPERTIES:
        channel = values.get(key)
        if channel is None:
            continue
        value = channel.url if key == "website" else channel.value
        lines.append(f"{prop}:{escape_vcard_text(value)}")

    if profile_url:
        lines.append(f"URL:{escape_vcard_text(profile_url)}")
    if profile.bio:
        lines.append(f"NOTE:{escape_vcard_text(profile.bio)}")
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"
