import asyncio
from typing import Optional

import discord
from discord.ext import commands
from discord import app_commands

from ladder_bot.config import Config
from ladder_bot.operations.challenge_operations import ChallengeLifecycleManager
from ladder_bot.operations.expiry_reconciler import ExpiryReconciler
from ladder_bot.services.challenge_store import ChallengeStore
from ladder_bot.services.ladder import LadderRepository
from ladder_bot.services.ladder_store import SheetsLadderStore
from ladder_bot.services.notifier import DiscordChannelNotifier
from ladder_bot.utils.logger import setup_logger
from ladder_bot.utils.redis_utils import RedisUtils


class LadderBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.redis = None
        self.ladder: Optional[LadderRepository] = None
        self.challenge_store: Optional[ChallengeStore] = None
        self.notifier: Optional[DiscordChannelNotifier] = None
        self.lifecycle: Optional[ChallengeLifecycleManager] = None
        self.reconciler: Optional[ExpiryReconciler] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up NvD Ladder Bot...")

        await self.init_services()

        # Load cogs
        await self.load_cogs()

        # Sync slash commands
        await self._sync_commands()

        self.logger.info("NvD Ladder Bot setup complete!")

    async def init_services(self):
        """Build the store clients once and hand them to the ladder services"""
        self.redis = await RedisUtils.create_redis_client()
        if self.redis is None:
            self.logger.error("Fast store unavailable; challenge commands are disabled")
            return

        self.ladder = LadderRepository(SheetsLadderStore.from_config())
        self.challenge_store = ChallengeStore(self.redis)
        self.notifier = DiscordChannelNotifier(self, Config.CHALLENGE_CHANNEL_ID)
        self.lifecycle = ChallengeLifecycleManager(self.ladder, self.challenge_store, self.notifier)
        self.reconciler = ExpiryReconciler(self.ladder, self.challenge_store, self.notifier)
        self.logger.info("Ladder services initialized")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'ladder_bot.cogs.challenge',
            'ladder_bot.cogs.admin',
            'ladder_bot.cogs.housekeeping',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        try:
            guild_ids = Config.get_guild_ids()

            if guild_ids:
                # Guild-specific sync (instant updates)
                for guild_id in guild_ids:
                    try:
                        guild = discord.Object(id=guild_id)
                        self.tree.copy_global_to(guild=guild)
                        synced = await self.tree.sync(guild=guild)
                        self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
                    except discord.errors.Forbidden:
                        self.logger.error(f"Permission error syncing to guild {guild_id}. Ensure the bot has the 'applications.commands' scope.", exc_info=True)
                    except discord.errors.HTTPException as e:
                        self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, Response: {e.text}", exc_info=True)
            else:
                # Global sync (can take up to 1 hour to propagate)
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
        except Exception as e:
            self.logger.error(f"Failed to sync commands: {e}", exc_info=True)

    async def on_ready(self):
        """Called when the bot is ready"""
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')

        await self.change_presence(
            activity=discord.Game(name="NvD Ladder | /nvd-challenge")
        )

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
            member_commands = ('nvd-challenge', 'nvd-reportwin', 'nvd-currentchallenges', 'nvd-currentvacations')
            if command_name.startswith('nvd-') and command_name not in member_commands:
                title = "❌ Administrative Privileges Required"
                description = f"This command is restricted to the {Config.ADMIN_ROLE_NAME} role."
            else:
                title = "❌ Permission Denied"
                description = f"You need the {Config.MEMBER_ROLE_NAME} role to use this command."
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=True)
            title = "❌ An error occurred"
            description = "An unexpected error occurred while processing your command. Please try again later."

        error_embed = discord.Embed(title=title, description=description, color=discord.Color.red())
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=error_embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down NvD Ladder Bot...")

        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = LadderBot()

    try:
        await bot.start(Config.DISCORD_TOKEN)
    except Exception as e:
        bot.logger.error(f"Fatal error: {e}", exc_info=True)
    finally:
        await bot.close()


def run():
    asyncio.run(main())


if __name__ == '__main__':
    run()
