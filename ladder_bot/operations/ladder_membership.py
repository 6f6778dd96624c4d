"""
Ladder membership rules.

Pure functions over a ladder snapshot for players joining and leaving the
ladder. Removing a player closes the gap: every player below moves up one
rank and one sheet row, and opponent pointers follow the players they name.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ladder_bot.constants import SheetColumns
from ladder_bot.data_models.ladder import PlayerRow, PlayerStatus
from ladder_bot.utils.challenge_dates import parse_challenge_date


@dataclass
class RemovalPlan:
    """Rows to rewrite after a removal, and the challenge pairs it touches."""
    removed: PlayerRow
    updated_rows: List[PlayerRow] = field(default_factory=list)
    vacated_sheet_row: Optional[int] = None
    freed_opponent: Optional[PlayerRow] = None  # challenge partner that pointed back at the removed player
    repointed_pairs: List[Tuple[int, int]] = field(default_factory=list)


def find_registered(players: Iterable[PlayerRow], display_name: str, discord_id: str) -> Optional[PlayerRow]:
    """Existing row for this Discord identity or display name, if any."""
    lowered = display_name.strip().lower()
    return next(
        (p for p in players
         if (discord_id and p.discord_id == str(discord_id)) or p.display_name.lower() == lowered),
        None
    )


def new_player_row(players: List[PlayerRow], display_name: str, discord_id: str, notes: str = '') -> PlayerRow:
    """Row for a new player at the bottom of the ladder, in the first sheet row below the last player."""
    last = max(players, key=lambda p: p.rank, default=None)
    if last is None:
        rank, sheet_row = 1, SheetColumns.FIRST_DATA_ROW
    else:
        rank = last.rank + 1
        sheet_row = max(p.sheet_row or 0 for p in players) + 1
    return PlayerRow(
        rank=rank,
        display_name=display_name.strip(),
        status=PlayerStatus.AVAILABLE.value,
        discord_id=str(discord_id),
        notes=notes or '',
        sheet_row=sheet_row,
    )


def plan_removal(players: List[PlayerRow], removed_rank: int) -> Optional[RemovalPlan]:
    """
    Work out the ladder rows that change when ``removed_rank`` leaves.

    Returns:
        RemovalPlan, or None if the rank is not on the ladder
    """
    ordered = sorted(players, key=lambda p: p.rank)
    removed = next((p for p in ordered if p.rank == removed_rank), None)
    if removed is None:
        return None

    plan = RemovalPlan(removed=removed)
    if removed.in_challenge and removed.opponent_rank is not None:
        opponent = next((p for p in ordered if p.rank == removed.opponent_rank), None)
        if opponent is not None and opponent.in_challenge and opponent.opponent_rank == removed_rank:
            plan.freed_opponent = opponent

    below = [p for p in ordered if p.rank > removed_rank]
    slots = [removed.sheet_row] + [p.sheet_row for p in below]
    plan.vacated_sheet_row = slots[-1]

    for player in ordered:
        if player.rank == removed_rank:
            continue
        updated = player
        if player.rank > removed_rank:
            updated = replace(updated, rank=player.rank - 1, sheet_row=slots[below.index(player)])

        if player.in_challenge and player.opponent_rank is not None:
            if player.opponent_rank == removed_rank:
                updated = updated.cleared()
            elif player.opponent_rank > removed_rank:
                updated = replace(updated, opponent_rank=player.opponent_rank - 1)
                if player.rank < player.opponent_rank:
                    plan.repointed_pairs.append((player.rank, player.opponent_rank))

        if updated != player:
            plan.updated_rows.append(updated)

    return plan


def vacation_players(players: Iterable[PlayerRow], now: Optional[datetime] = None) -> List[PlayerRow]:
    """Players on vacation, longest away first; rows without a readable start date come last."""
    away = [p for p in players if p.on_vacation]

    def started(player: PlayerRow):
        start = parse_challenge_date(player.challenge_timestamp, now)
        return (start is None, start.timestamp() if start else 0, player.rank)

    return sorted(away, key=started)
