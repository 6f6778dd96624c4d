"""
Admin Cog - ladder maintenance commands

Every command here is restricted to the ladder admin role, including
/nvd-register and /nvd-remove for ladder membership.
"""

import discord
from discord import app_commands
from discord.ext import commands

from ladder_bot.operations.challenge_diagnostics import inspect_challenges
from ladder_bot.utils.challenge_dates import ladder_now
from ladder_bot.utils.embeds import build_cooldown_embed, build_inspection_embed, build_sweep_summary_embed, build_sync_embed
from ladder_bot.utils.error_embeds import ErrorEmbeds
from ladder_bot.utils.exceptions import LadderError
from ladder_bot.utils.logger import setup_logger
from ladder_bot.utils.permissions import is_ladder_admin

logger = setup_logger(__name__)


class AdminCog(commands.Cog):
    """Admin-only commands for managing the challenge ladder"""

    cooldowns = app_commands.Group(name="nvd-cooldowndebug", description="Debug cooldown information for the NvD ladder")

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Only ladder admins may use these commands"""
        return is_ladder_admin(interaction)

    async def _ensure_ready(self, interaction: discord.Interaction) -> bool:
        if self.bot.lifecycle is None or self.bot.reconciler is None:
            await interaction.response.send_message(embed=ErrorEmbeds.services_unavailable(), ephemeral=True)
            return False
        return True

    def _log_admin_action(self, interaction: discord.Interaction, action: str) -> None:
        self.logger.info(f"Admin {interaction.user} ({interaction.user.id}) ran {action}")

    @app_commands.command(name="nvd-extendchallenge", description="Extend a challenge by 2 days")
    @app_commands.describe(player="Rank or name of either player in the challenge")
    async def extend_challenge(self, interaction: discord.Interaction, player: str):
        """Extend a challenge"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"/nvd-extendchallenge {player}")

        result = await self.bot.lifecycle.extend_challenge(player, requester_is_privileged=True)
        if result.success:
            await interaction.followup.send(f"✅ {result.message}", ephemeral=True)
        else:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(result.message), ephemeral=True)

    @app_commands.command(name="nvd-cancelchallenge", description="Cancel a challenge")
    @app_commands.describe(player="Rank or name of either player in the challenge")
    async def cancel_challenge(self, interaction: discord.Interaction, player: str):
        """Cancel a challenge"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"/nvd-cancelchallenge {player}")

        result = await self.bot.lifecycle.cancel_challenge(player, requester_is_privileged=True)
        if result.success:
            await interaction.followup.send(f"✅ {result.message}", ephemeral=True)
        else:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(result.message), ephemeral=True)

    @app_commands.command(name="nvd-register", description="Register a new player at the bottom of the NvD ladder")
    @app_commands.describe(member="Discord member to register", notes="Optional notes for the player")
    async def register(self, interaction: discord.Interaction, member: discord.Member, notes: str = ''):
        """Add a player below the current last rank"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"/nvd-register {member.id}")

        result = await self.bot.lifecycle.register_player(
            member.display_name, member.id, notes, requester_is_privileged=True
        )
        if result.success:
            await interaction.followup.send(f"✅ {result.message}", ephemeral=True)
        else:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(result.message), ephemeral=True)

    @app_commands.command(name="nvd-remove", description="Move a player to Extended Vacation and close the gap")
    @app_commands.describe(rank="Rank of the player to remove")
    async def remove(self, interaction: discord.Interaction, rank: app_commands.Range[int, 1]):
        """Remove a player from the ladder"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"/nvd-remove {rank}")

        result = await self.bot.lifecycle.remove_player(rank, requester_is_privileged=True)
        if result.success:
            await interaction.followup.send(f"✅ {result.message}", ephemeral=True)
        else:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(result.message), ephemeral=True)

    @app_commands.command(name="nvd-nullchallenges", description="Nullify challenges older than 3 days on the NvD ladder")
    async def null_challenges(self, interaction: discord.Interaction):
        """Run the expiry sweep now"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer()
        self._log_admin_action(interaction, "/nvd-nullchallenges")

        try:
            report = await self.bot.reconciler.sweep_expired_challenges(announce=False)
        except LadderError as e:
            self.logger.error(f"Manual sweep failed: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e))
            return

        await interaction.followup.send(embed=build_sweep_summary_embed(report, automatic=False))

    @app_commands.command(name="nvd-debugchallenges", description="Inspect the ladder for challenge pairing and date problems")
    async def debug_challenges(self, interaction: discord.Interaction):
        """Read-only challenge diagnostics"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)

        try:
            players = await self.bot.ladder.fetch_players()
            inspection = inspect_challenges(players, ladder_now())
            active = await self.bot.challenge_store.list_challenges()
            locks = await self.bot.challenge_store.list_player_locks()
        except LadderError as e:
            self.logger.error(f"Challenge diagnostics failed: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return

        await interaction.followup.send(
            embed=build_inspection_embed(inspection, fast_store_challenges=len(active), player_locks=len(locks)),
            ephemeral=True
        )

    @app_commands.command(name="nvd-syncredis", description="Sync ladder challenges into the fast store")
    @app_commands.describe(dry_run="Show what would be synced without making changes")
    async def sync_redis(self, interaction: discord.Interaction, dry_run: bool = False):
        """Rebuild fast-store records from the ladder"""
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"/nvd-syncredis dry_run={dry_run}")

        try:
            report = await self.bot.reconciler.sync_existing_challenges(dry_run=dry_run)
        except LadderError as e:
            self.logger.error(f"Sync failed: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return

        await interaction.followup.send(embed=build_sync_embed(report), ephemeral=True)

    @cooldowns.command(name="list", description="List all active cooldowns")
    async def cooldown_list(self, interaction: discord.Interaction):
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        try:
            statuses = await self.bot.challenge_store.list_cooldowns()
        except LadderError as e:
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return
        await interaction.followup.send(embed=build_cooldown_embed(statuses), ephemeral=True)

    @cooldowns.command(name="check", description="Check cooldowns for a specific player")
    @app_commands.describe(player="Player to check")
    async def cooldown_check(self, interaction: discord.Interaction, player: discord.User):
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        try:
            statuses = await self.bot.challenge_store.get_player_cooldowns(str(player.id))
        except LadderError as e:
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return
        await interaction.followup.send(
            embed=build_cooldown_embed(statuses, title=f"🕒 Cooldowns for {player.display_name}"),
            ephemeral=True
        )

    @cooldowns.command(name="clear", description="Clear the cooldown between two players")
    @app_commands.describe(player1="First player", player2="Second player")
    async def cooldown_clear(self, interaction: discord.Interaction, player1: discord.User, player2: discord.User):
        if not await self._ensure_ready(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        self._log_admin_action(interaction, f"cooldown clear {player1.id} {player2.id}")
        try:
            await self.bot.challenge_store.remove_cooldown(str(player1.id), str(player2.id))
        except LadderError as e:
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return
        await interaction.followup.send(
            f"✅ Cooldown between {player1.mention} and {player2.mention} cleared.",
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
