"""
Role checks for ladder commands.
"""

import discord

from ladder_bot.config import Config


def has_role(member, role_name: str) -> bool:
    roles = getattr(member, 'roles', None) or []
    return any(role.name == role_name for role in roles)


def is_ladder_admin(interaction: discord.Interaction) -> bool:
    """Admin role holders and server administrators count as privileged."""
    user = interaction.user
    permissions = getattr(user, 'guild_permissions', None)
    if permissions is not None and permissions.administrator:
        return True
    return has_role(user, Config.ADMIN_ROLE_NAME)


def is_ladder_member(interaction: discord.Interaction) -> bool:
    return is_ladder_admin(interaction) or has_role(interaction.user, Config.MEMBER_ROLE_NAME)
