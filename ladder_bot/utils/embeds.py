"""
Shared embed utilities for the NvD Ladder Bot.

Provides the announcement and report embeds used by the lifecycle manager,
the expiry reconciler and the admin commands.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import discord

from ladder_bot.constants import UIConstants
from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.data_models.reports import ChallengeInspection, NullifiedPair, SweepReport, SyncReport

BLANK = '​'


def mention(discord_id: str, fallback: str = 'Unknown player') -> str:
    return f"<@{discord_id}>" if discord_id else fallback


def _chunk_lines(lines: Sequence[str], limit: int = UIConstants.FIELD_LIMIT) -> List[str]:
    """Group lines into chunks that fit one embed field value."""
    chunks, current = [], ''
    for line in lines:
        line = line[:limit]
        candidate = f"{current}\n{line}" if current else line
        if len(candidate) > limit:
            chunks.append(current)
            current = line
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


def add_chunked_field(embed: discord.Embed, name: str, lines: Sequence[str]) -> None:
    """Add one or more fields so that no value exceeds Discord's limit."""
    for index, chunk in enumerate(_chunk_lines(lines)):
        embed.add_field(name=name if index == 0 else BLANK, value=chunk, inline=False)


def _versus_fields(embed: discord.Embed, left_name: str, left_value: str,
                   right_name: str, right_value: str, middle: str = BLANK) -> None:
    embed.add_field(name=left_name, value=left_value, inline=True)
    embed.add_field(name=middle, value='VS', inline=True)
    embed.add_field(name=right_name, value=right_value, inline=True)


def build_challenge_issued_embed(challenger: PlayerRow, target: PlayerRow) -> discord.Embed:
    embed = discord.Embed(
        title=f"{UIConstants.CHALLENGER_EMOJI} ⚔️ {UIConstants.CHALLENGED_EMOJI} New Challenge Initiated!",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    _versus_fields(
        embed,
        f"{UIConstants.CHALLENGER_EMOJI} Challenger",
        f"Rank #{challenger.rank} ({mention(challenger.discord_id, challenger.display_name)})",
        f"{UIConstants.CHALLENGED_EMOJI} Challenged",
        f"Rank #{target.rank} ({mention(target.discord_id, target.display_name)})",
    )
    embed.set_footer(text="May the best player win!")
    return embed


def build_challenge_result_embed(winner: PlayerRow, loser: PlayerRow, is_defense: bool) -> discord.Embed:
    """
    Build the result announcement.

    Args:
        winner: Winner's row as it was before the result was applied
        loser: Loser's row as it was before the result was applied
        is_defense: True when the higher-ranked player won
    """
    if is_defense:
        description = f"**{winner.display_name}** has successfully defended their rank!"
        winner_title = f"{UIConstants.CHALLENGER_EMOJI} 🛡️ Defender (Rank #{winner.rank})"
        loser_title = f"{UIConstants.CHALLENGED_EMOJI} ⚔️ Challenger (Rank #{loser.rank})"
        footer = "Rank Successfully Defended!"
    else:
        description = f"**{winner.display_name}** has climbed the ladder to rank #{loser.rank}!"
        winner_title = f"{UIConstants.CHALLENGER_EMOJI} 🏆 Victor (Rank #{loser.rank})"
        loser_title = f"{UIConstants.CHALLENGED_EMOJI} 📉 Defeated (Rank #{winner.rank})"
        footer = "Ranks have been updated!"

    embed = discord.Embed(
        title=f"{UIConstants.CHALLENGER_EMOJI} ⚔️ Challenge Result Announced! ⚔️ {UIConstants.CHALLENGED_EMOJI}",
        description=description,
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    _versus_fields(
        embed,
        winner_title, f"**{winner.display_name}**\n{mention(winner.discord_id)}",
        loser_title, f"**{loser.display_name}**\n{mention(loser.discord_id)}",
        middle='⚔️'
    )
    embed.set_footer(text=footer)
    return embed


def build_challenge_extended_embed(player: PlayerRow, opponent: PlayerRow, new_date: str) -> discord.Embed:
    embed = discord.Embed(
        title="⏳ Challenge Extended ⏳",
        description="The challenge has been extended by 2 days.",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    _versus_fields(
        embed,
        f"Rank #{player.rank}: {player.display_name}", f"New Challenge Date: {new_date}",
        f"Rank #{opponent.rank}: {opponent.display_name}", f"New Challenge Date: {new_date}",
    )
    return embed


def build_challenge_canceled_embed(player: PlayerRow, opponent: PlayerRow) -> discord.Embed:
    embed = discord.Embed(
        title="⚔️ Challenge Canceled ⚔️",
        description="The challenge has been canceled by an admin.",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    _versus_fields(
        embed,
        f"Rank {player.rank}", mention(player.discord_id, player.display_name),
        f"Rank {opponent.rank}", mention(opponent.discord_id, opponent.display_name),
    )
    return embed


def build_auto_null_embed(pair: NullifiedPair) -> discord.Embed:
    """Announcement for a single challenge nullified by expiry."""
    first, second = sorted((pair.player, pair.opponent), key=lambda p: p.rank)
    embed = discord.Embed(
        title="🕒 Challenge Auto-Nullified",
        description="The following challenge has been automatically nullified after 3 days:",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    _versus_fields(
        embed,
        f"{UIConstants.CHALLENGED_EMOJI} Challenged", f"Rank #{first.rank} ({mention(first.discord_id, first.display_name)})",
        f"{UIConstants.CHALLENGER_EMOJI} Challenger", f"Rank #{second.rank} ({mention(second.discord_id, second.display_name)})",
    )
    embed.set_footer(text="Players are now free to issue new challenges")
    return embed


def build_sweep_summary_embed(report: SweepReport, automatic: bool = True) -> discord.Embed:
    count = len(report.nullified)
    if automatic:
        title = "🤖 Auto-Nullified Old Challenges 🤖"
        description = f"✨ Auto-nullified {count} challenge pairs older than 3 days! ✨"
    else:
        title = "🛡️ Nullified Old Challenges 🛡️"
        description = f"✨ Success! Nullified {count} challenge pairs older than 3 days! ✨"
    if count == 0:
        description = "No challenges older than 3 days were found."

    embed = discord.Embed(
        title=title,
        description=description,
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )

    if report.nullified:
        add_chunked_field(embed, "Nullified Challenges", [
            f"Rank #{pair.player.rank} {pair.player.display_name} vs "
            f"Rank #{pair.opponent.rank} {pair.opponent.display_name}"
            + (f" - {pair.age_days:.1f} days old" if pair.age_days is not None else '')
            for pair in report.nullified
        ])

    if report.parse_issues:
        add_chunked_field(embed, "⚠️ Date Parsing Issues (Manual Review Required)", [
            f"Rank #{issue.rank} {issue.display_name}: date \"{issue.value}\" could not be parsed"
            for issue in report.parse_issues
        ])

    if report.integrity_faults:
        add_chunked_field(embed, "⚠️ Pairing Problems (Manual Review Required)", [
            f"Rank #{fault.rank} -> #{fault.opponent_rank}: {fault.detail}"
            for fault in report.integrity_faults
        ])

    embed.set_footer(text="Players can now issue new challenges")
    return embed


def build_inspection_embed(inspection: ChallengeInspection, fast_store_challenges: Optional[int] = None,
                           player_locks: Optional[int] = None) -> discord.Embed:
    embed = discord.Embed(
        title="🔍 Challenge Diagnostics",
        description=(
            f"**{inspection.challenge_rows}** rows in Challenge status, "
            f"**{len(inspection.valid_pairs)}** valid pairs."
        ),
        color=UIConstants.SUCCESS_COLOR if inspection.healthy else UIConstants.WARNING_COLOR,
        timestamp=datetime.now(timezone.utc)
    )

    if fast_store_challenges is not None:
        embed.add_field(name="Fast-store challenges", value=str(fast_store_challenges), inline=True)
    if player_locks is not None:
        embed.add_field(name="Player locks", value=str(player_locks), inline=True)

    if inspection.valid_pairs:
        add_chunked_field(embed, "✅ Valid Challenges", [
            f"#{a.rank} {a.display_name} vs #{b.rank} {b.display_name} ({a.challenge_timestamp or 'no date'})"
            for a, b in inspection.valid_pairs
        ])
    if inspection.integrity_faults:
        add_chunked_field(embed, "❌ Pairing Problems", [
            f"Rank #{fault.rank} -> #{fault.opponent_rank}: {fault.detail}"
            for fault in inspection.integrity_faults
        ])
    if inspection.date_issues:
        add_chunked_field(embed, "⚠️ Date Issues", [
            f"Rank #{issue.rank} {issue.display_name}: {issue.reason} ({issue.value or 'empty'})"
            + (f", {issue.age_days:.1f} days old" if issue.age_days is not None else '')
            for issue in inspection.date_issues
        ])
    if inspection.healthy:
        embed.set_footer(text="No problems found")
    return embed


def build_current_challenges_embed(pairs: Iterable) -> discord.Embed:
    """List active pairs, given as (challenger, challenged) row tuples."""
    pairs = list(pairs)
    embed = discord.Embed(
        title="🏆 Current NvD Challenges 🏆",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    if not pairs:
        embed.description = "There are no active challenges right now."
        return embed

    embed.description = f"**{len(pairs)}** active challenges"
    for challenger, challenged in pairs[:25]:
        embed.add_field(
            name=f"Rank #{challenger.rank} vs Rank #{challenged.rank}",
            value=(
                f"**{challenger.display_name}** 🆚 **{challenged.display_name}** • "
                f"*{challenger.challenge_timestamp or 'no date'}*"
            ),
            inline=False
        )
    if len(pairs) > 25:
        embed.set_footer(text=f"Showing 25 of {len(pairs)} challenges")
    return embed


def build_cooldown_embed(cooldowns: Sequence, title: str = "🕒 Current Cooldowns") -> discord.Embed:
    """List cooldown statuses as 'A <-> B, N hours left'."""
    embed = discord.Embed(title=title, color=UIConstants.LADDER_COLOR, timestamp=datetime.now(timezone.utc))
    if not cooldowns:
        embed.description = "No active cooldowns."
        return embed
    embed.description = f"**{len(cooldowns)}** active cooldowns"
    add_chunked_field(embed, "Cooldowns", [
        f"{status.record.player1.name} ↔ {status.record.player2.name}: {status.remaining_hours}h left"
        for status in cooldowns
    ])
    return embed


def build_sync_embed(report: SyncReport) -> discord.Embed:
    title = "🔍 Fast-Store Sync Preview" if report.dry_run else "✅ Fast-Store Sync Complete"
    embed = discord.Embed(
        title=title,
        color=UIConstants.ERROR_COLOR if report.errors else UIConstants.SUCCESS_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    verb = "Would sync" if report.dry_run else "Synced"
    embed.add_field(name=verb, value=str(len(report.synced)), inline=True)
    embed.add_field(name="Already present", value=str(len(report.already_present)), inline=True)
    embed.add_field(name="Player locks created", value=str(report.player_locks_created), inline=True)
    embed.add_field(name="Orphaned locks removed", value=str(report.orphaned_locks_removed), inline=True)
    if report.synced:
        add_chunked_field(embed, f"{verb} challenges", [f"#{a} vs #{b}" for a, b in report.synced])
    if report.errors:
        add_chunked_field(embed, "Errors", report.errors)
    return embed


def build_player_registered_embed(player: PlayerRow) -> discord.Embed:
    embed = discord.Embed(
        title="✨ New Player Registered to NvD Ladder! ✨",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    embed.add_field(name="👤 **Discord User**", value=f"**{player.display_name}**", inline=False)
    embed.add_field(name="🏆 **Rank**", value=f"#{player.rank}", inline=False)
    embed.add_field(name="📜 **Notes**", value=f"**{player.notes}**" if player.notes else "None", inline=False)
    embed.set_footer(text="Successfully added to the NvD Ladder!")
    return embed


def build_farewell_embed(player: PlayerRow, farewell: str, ranks_updated: int) -> discord.Embed:
    """Announcement for a player moved off the ladder to extended vacation."""
    embed = discord.Embed(
        title="👋 Farewell from the NvD Ladder!",
        description=farewell,
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    embed.add_field(name="👤 Discord User", value=mention(player.discord_id, player.display_name), inline=True)
    embed.add_field(name="🏆 Rank", value=f"#{player.rank}", inline=True)
    embed.set_footer(text=f"Player moved to Extended Vacation. {ranks_updated} ladder ranks updated.")
    return embed


def build_vacations_embed(players: Sequence[PlayerRow]) -> discord.Embed:
    """Players on vacation, longest away first."""
    embed = discord.Embed(
        title="🏝️ NvD Vacation Leaderboard 🏝️",
        color=UIConstants.LADDER_COLOR,
        timestamp=datetime.now(timezone.utc)
    )
    if not players:
        embed.description = "There are currently no players on vacation."
        return embed

    embed.description = "Who is winning the vacation game? Ranked by longest time away... *looks off into sunset* ☀️"
    for player in players[:25]:
        start = player.challenge_timestamp.split(',')[0] if player.challenge_timestamp else None
        embed.add_field(
            name=f"Rank #{player.rank}: {player.display_name}",
            value=f"Start Date: {start or 'Enjoying an indefinite holiday 😎'}",
            inline=False
        )
    if len(players) > 25:
        embed.set_footer(text=f"Showing 25 of {len(players)} players on vacation")
    else:
        embed.set_footer(text="We hope to see you back soon!")
    return embed


def build_warning_message(discord_id_a: str, discord_id_b: str) -> str:
    """24-hours-remaining notice for a challenge pair."""
    return (
        f"⚠️ **Challenge Expiry Warning** ⚠️\n"
        f"{mention(discord_id_a)} and {mention(discord_id_b)}, your challenge will automatically "
        f"expire in 24 hours! Please complete your match or use `/nvd-extendchallenge` if you need more time."
    )
