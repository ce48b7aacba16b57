from __future__ import annotations

from typing import Any, Iterable, Optional

import discord


IMAGE_CONTENT_TYPES = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}
)
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")


def is_image_attachment(attachment: Any) -> bool:
    content_type = (getattr(attachment, "content_type", None) or "").split(";")[0].strip().lower()
    if content_type in IMAGE_CONTENT_TYPES:
        return True
    filename = (getattr(attachment, "filename", None) or "").lower()
    return filename.endswith(IMAGE_EXTENSIONS)


def has_image(message: Any) -> bool:
    return any(is_image_attachment(a) for a in getattr(message, "attachments", None) or [])


def is_vouch_channel(channel: Any) -> bool:
    name = getattr(channel, "name", None)
    return bool(name) and "vouch" in name.lower()


def is_casino_channel(channel: Any, casino_channel_id: Optional[str]) -> bool:
    """Use the configured channel id when there is one, else any channel named *casino*."""

    if casino_channel_id:
        return str(getattr(channel, "id", "")) == str(casino_channel_id)
    name = getattr(channel, "name", None)
    return bool(name) and "casino" in name.lower()


def find_provider_role(
    guild: Any,
    role_id: Optional[str],
    role_name: str,
) -> Optional[discord.Role]:
    roles: Iterable[Any] = getattr(guild, "roles", None) or []
    if role_id:
        return next((r for r in roles if str(r.id) == str(role_id)), None)
    wanted = (role_name or "").lower()
    return next((r for r in roles if (r.name or "").lower() == wanted), None)


def member_has_role(member: Any, role: Any) -> bool:
    return any(getattr(r, "id", None) == role.id for r in getattr(member, "roles", None) or [])


def mentions_role_holder(message: Any, role: Any) -> bool:
    """True when any mentioned member holds `role` (members only, no fetching)."""

    for mentioned in getattr(message, "mentions", None) or []:
        if member_has_role(mentioned, role):
            return True
    return False


async def mentions_role_holder_with_fetch(message: discord.Message, role: discord.Role) -> bool:
    """
    Like `mentions_role_holder`, but resolves plain `User` mentions to
    guild members. Old messages from history often carry users only.
    """

    if mentions_role_holder(message, role):
        return True

    guild = message.guild
    if guild is None:
        return False

    for user in message.mentions:
        if isinstance(user, discord.Member):
            continue
        member = guild.get_member(user.id)
        if member is None:
            try:
                member = await guild.fetch_member(user.id)
            except discord.HTTPException:
                continue
        if member_has_role(member, role):
            return True
    return False
