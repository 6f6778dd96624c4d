"""
Outbound announcements.

The lifecycle manager and the expiry reconciler only see ``Notifier``; the
Discord implementation resolves the challenge channel on first use.
"""

from abc import ABC, abstractmethod
from typing import Optional

import discord

from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class Notifier(ABC):
    """Announcement sink for ladder events."""

    @abstractmethod
    async def announce(self, message: str) -> None:
        """Post a plain message to the ladder channel."""

    @abstractmethod
    async def announce_embed(self, embed: discord.Embed, content: Optional[str] = None) -> None:
        """Post an embed (optionally with text content) to the ladder channel."""


class DiscordChannelNotifier(Notifier):
    """Posts to a fixed text channel of the running bot."""

    def __init__(self, bot, channel_id: int):
        self.bot = bot
        self.channel_id = channel_id
        self._channel: Optional[discord.abc.Messageable] = None
        self.logger = logger

    async def _resolve_channel(self) -> Optional[discord.abc.Messageable]:
        if self._channel is None:
            channel = self.bot.get_channel(self.channel_id)
            if channel is None:
                try:
                    channel = await self.bot.fetch_channel(self.channel_id)
                except discord.HTTPException as e:
                    self.logger.error(f"Could not resolve challenge channel {self.channel_id}: {e}")
                    return None
            self._channel = channel
        return self._channel

    async def announce(self, message: str) -> None:
        channel = await self._resolve_channel()
        if channel is None:
            self.logger.warning(f"Dropping announcement, channel unavailable: {message[:80]}")
            return
        await channel.send(message)

    async def announce_embed(self, embed: discord.Embed, content: Optional[str] = None) -> None:
        channel = await self._resolve_channel()
        if channel is None:
            self.logger.warning(f"Dropping embed announcement '{embed.title}', channel unavailable")
            return
        await channel.send(content=content, embed=embed)
