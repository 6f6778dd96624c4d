"""
Challenge Cog - player-facing ladder commands

/nvd-challenge and /nvd-reportwin are restricted to the challenge channel;
/nvd-currentchallenges and /nvd-currentvacations work anywhere.
"""

import discord
from discord import app_commands
from discord.ext import commands

from ladder_bot.config import Config
from ladder_bot.operations.challenge_diagnostics import challenge_pairs
from ladder_bot.operations.challenge_operations import OperationResult
from ladder_bot.operations.ladder_membership import vacation_players
from ladder_bot.utils.challenge_dates import ladder_now
from ladder_bot.utils.embeds import build_current_challenges_embed, build_vacations_embed
from ladder_bot.utils.error_embeds import ErrorEmbeds
from ladder_bot.utils.exceptions import LadderError
from ladder_bot.utils.logger import setup_logger
from ladder_bot.utils.permissions import is_ladder_admin, is_ladder_member

logger = setup_logger(__name__)


class ChallengeCog(commands.Cog):
    """Issue challenges, report results and list active challenges"""

    def __init__(self, bot):
        self.bot = bot
        self.logger = logger

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        """Only ladder members may use these commands"""
        return is_ladder_member(interaction)

    async def _ensure_ready(self, interaction: discord.Interaction) -> bool:
        if self.bot.lifecycle is None:
            await interaction.response.send_message(embed=ErrorEmbeds.services_unavailable(), ephemeral=True)
            return False
        return True

    async def _ensure_channel(self, interaction: discord.Interaction) -> bool:
        if Config.CHALLENGE_CHANNEL_ID and interaction.channel_id != Config.CHALLENGE_CHANNEL_ID:
            await interaction.response.send_message(
                embed=ErrorEmbeds.wrong_channel(Config.CHALLENGE_CHANNEL_ID),
                ephemeral=True
            )
            return False
        return True

    @staticmethod
    async def _send_result(interaction: discord.Interaction, result: OperationResult) -> None:
        if result.success:
            await interaction.followup.send(f"✅ {result.message}", ephemeral=True)
        else:
            await interaction.followup.send(embed=ErrorEmbeds.operation_failed(result.message), ephemeral=True)

    @app_commands.command(name="nvd-challenge", description="Challenge a player above you on the NvD ladder")
    @app_commands.describe(
        challenger_rank="Your current rank",
        target_rank="The rank you want to challenge"
    )
    async def challenge(self, interaction: discord.Interaction, challenger_rank: int, target_rank: int):
        """Issue a challenge"""
        if not await self._ensure_channel(interaction) or not await self._ensure_ready(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        result = await self.bot.lifecycle.evaluate_and_issue_challenge(
            challenger_rank=challenger_rank,
            target_rank=target_rank,
            requester_id=interaction.user.id,
            requester_is_privileged=is_ladder_admin(interaction)
        )
        self.logger.info(
            f"/nvd-challenge {challenger_rank}->{target_rank} by {interaction.user} ({interaction.user.id}): "
            f"{'ok' if result.success else result.message}"
        )
        await self._send_result(interaction, result)

    @app_commands.command(name="nvd-reportwin", description="Report the result of a challenge")
    @app_commands.describe(
        winner_rank="Rank of the winner",
        loser_rank="Rank of the loser"
    )
    async def report_win(self, interaction: discord.Interaction, winner_rank: int, loser_rank: int):
        """Report a challenge result"""
        if not await self._ensure_channel(interaction) or not await self._ensure_ready(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        result = await self.bot.lifecycle.report_result(
            winner_rank=winner_rank,
            loser_rank=loser_rank,
            requester_id=interaction.user.id,
            requester_is_privileged=is_ladder_admin(interaction)
        )
        self.logger.info(
            f"/nvd-reportwin {winner_rank} beat {loser_rank} by {interaction.user} ({interaction.user.id}): "
            f"{'ok' if result.success else result.message}"
        )
        await self._send_result(interaction, result)

    @app_commands.command(name="nvd-currentchallenges", description="Display all current challenges on the NvD ladder")
    async def current_challenges(self, interaction: discord.Interaction):
        """List active challenge pairs"""
        if not await self._ensure_ready(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        try:
            players = await self.bot.ladder.fetch_players()
        except LadderError as e:
            self.logger.error(f"Could not load ladder for current challenges: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return

        await interaction.followup.send(embed=build_current_challenges_embed(challenge_pairs(players)), ephemeral=True)

    @app_commands.command(name="nvd-currentvacations", description="Display all players on vacation on the NvD ladder")
    async def current_vacations(self, interaction: discord.Interaction):
        """List players on vacation, longest away first"""
        if not await self._ensure_ready(interaction):
            return

        await interaction.response.defer(ephemeral=True)
        try:
            players = await self.bot.ladder.fetch_players()
        except LadderError as e:
            self.logger.error(f"Could not load ladder for current vacations: {e}", exc_info=True)
            await interaction.followup.send(embed=ErrorEmbeds.from_error(e), ephemeral=True)
            return

        await interaction.followup.send(
            embed=build_vacations_embed(vacation_players(players, ladder_now())),
            ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(ChallengeCog(bot))
