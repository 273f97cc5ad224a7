from __future__ import annotations

from collections.abc import Collection

import discord


def is_privileged(member: discord.Member, moderator_role_ids: Collection[int] = ()) -> bool:
    if member is None:
        return False
    if member.guild is not None and member.guild.owner_id == member.id:
        return True
    perms = member.guild_permissions
    if perms.administrator or perms.manage_guild:
        return True
    return any(role.id in moderator_role_ids for role in member.roles)


def has_any_role(member: discord.Member, role_ids: Collection[int]) -> bool:
    if member is None or not role_ids:
        return False
    return any(role.id in role_ids for role in member.roles)
