"""
Centralized error embeds for consistent error handling across the NvD Ladder Bot.

Provides standardized error messages and formatting so every command reports
failures the same way.
"""

import discord

from ladder_bot.constants import UIConstants
from ladder_bot.utils.exceptions import ConflictError, LadderError, NotFoundError, ValidationError


class ErrorEmbeds:
    """Centralized error embed factory for consistent error handling."""

    @staticmethod
    def from_error(error: LadderError) -> discord.Embed:
        """Create embed for any ladder error using its user-facing message."""
        if isinstance(error, ValidationError):
            title = "Challenge Not Allowed"
        elif isinstance(error, NotFoundError):
            title = "Player Not Found"
        elif isinstance(error, ConflictError):
            title = "Challenge Conflict"
        else:
            title = "Ladder Unavailable"
        return discord.Embed(title=title, description=error.user_message, color=UIConstants.ERROR_COLOR)

    @staticmethod
    def operation_failed(message: str) -> discord.Embed:
        """Create embed for a refused or failed lifecycle operation."""
        return discord.Embed(title="❌ Request Failed", description=message, color=UIConstants.ERROR_COLOR)

    @staticmethod
    def wrong_channel(channel_id: int) -> discord.Embed:
        return discord.Embed(
            title="Wrong Channel",
            description=f"This command can only be used in <#{channel_id}>.",
            color=UIConstants.ERROR_COLOR
        )

    @staticmethod
    def services_unavailable() -> discord.Embed:
        return discord.Embed(
            title="Ladder Unavailable",
            description="The ladder services are still starting up. Please try again in a moment.",
            color=UIConstants.WARNING_COLOR
        )
