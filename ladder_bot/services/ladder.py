"""
Ladder repository: typed access to the ladder sheet.

This is the only place that knows sheet ranges and column order. Everything
above it works with ``PlayerRow`` objects.
"""

import asyncio
from typing import Iterable, List, Optional, Tuple

from ladder_bot.config import Config
from ladder_bot.constants import SheetColumns
from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.services.ladder_store import LadderStore
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class LadderRepository:
    """Reads and writes player rows in the ladder sheet."""

    def __init__(self, store: LadderStore, sheet_name: Optional[str] = None,
                 metrics_sheet_name: Optional[str] = None, vacation_sheet_name: Optional[str] = None):
        self.store = store
        self.sheet_name = sheet_name or Config.LADDER_SHEET_NAME
        self.metrics_sheet_name = metrics_sheet_name or Config.METRICS_SHEET_NAME
        self.vacation_sheet_name = vacation_sheet_name or Config.VACATION_SHEET_NAME
        self.logger = logger

    async def fetch_players(self) -> List[PlayerRow]:
        """Current ladder snapshot; rows without a numeric rank are skipped."""
        rows = await self.store.get_range(self.sheet_name, SheetColumns.DATA_RANGE)
        players = []
        for index, values in enumerate(rows):
            player = PlayerRow.from_row(values, sheet_row=index + SheetColumns.FIRST_DATA_ROW)
            if player is not None:
                players.append(player)
        return players

    @staticmethod
    def find_by_rank(players: Iterable[PlayerRow], rank: Optional[int]) -> Optional[PlayerRow]:
        if rank is None:
            return None
        return next((p for p in players if p.rank == rank), None)

    @staticmethod
    def find_by_rank_or_name(players: Iterable[PlayerRow], query: str) -> Optional[PlayerRow]:
        """Match a rank number first, then a case-insensitive display name."""
        query = (query or '').strip()
        if not query:
            return None
        players = list(players)
        if query.isdigit():
            player = LadderRepository.find_by_rank(players, int(query))
            if player:
                return player
        lowered = query.lower()
        return next((p for p in players if p.display_name.lower() == lowered), None)

    @staticmethod
    def _row_range(player: PlayerRow, first_column: str, last_column: str) -> str:
        if player.sheet_row is None:
            raise ValueError(f"Rank {player.rank} has no sheet row")
        return f"{first_column}{player.sheet_row}:{last_column}{player.sheet_row}"

    async def mark_challenge(self, first: PlayerRow, second: PlayerRow, timestamp: str) -> Tuple[PlayerRow, PlayerRow]:
        """
        Put both players into Challenge status pointing at each other.

        The two rows are written as independent concurrent requests; if one
        fails the other may already be written.
        """
        updated_first = first.with_challenge(timestamp, second.rank)
        updated_second = second.with_challenge(timestamp, first.rank)
        await asyncio.gather(*[
            self.store.update_range(
                self.sheet_name,
                self._row_range(player, 'C', 'E'),
                [player.to_row()[SheetColumns.STATUS:SheetColumns.OPPONENT_RANK + 1]]
            )
            for player in (updated_first, updated_second)
        ])
        self.logger.info(f"Marked challenge #{first.rank} vs #{second.rank} at {timestamp}")
        return updated_first, updated_second

    async def set_challenge_date(self, players: Iterable[PlayerRow], timestamp: str) -> None:
        players = list(players)
        await asyncio.gather(*[
            self.store.update_range(self.sheet_name, self._row_range(player, 'D', 'D'), [[timestamp]])
            for player in players
        ])
        self.logger.info(f"Set challenge date {timestamp} for ranks {[p.rank for p in players]}")

    async def clear_challenges(self, players: Iterable[PlayerRow]) -> List[PlayerRow]:
        """Reset status/date/opponent to Available/empty/empty in one batch."""
        cleared = [player.cleared() for player in players]
        await self.store.batch_update_cells(self.sheet_name, [
            {
                'range': self._row_range(player, 'C', 'E'),
                'values': [player.to_row()[SheetColumns.STATUS:SheetColumns.OPPONENT_RANK + 1]],
                'fields': 'userEnteredValue',
            }
            for player in cleared
        ])
        self.logger.info(f"Cleared challenge columns for ranks {[p.rank for p in cleared]}")
        return cleared

    async def write_rows(self, players: Iterable[PlayerRow], blank_sheet_rows: Iterable[int] = ()) -> None:
        """Overwrite whole rows A..H in one batch, blanking ``blank_sheet_rows`` in the same request."""
        updates = [
            {
                'range': self._row_range(player, 'A', 'H'),
                'values': [player.to_row()],
                'fields': 'userEnteredValue',
            }
            for player in players
        ]
        updates.extend(
            {
                'range': f"A{sheet_row}:H{sheet_row}",
                'values': [[''] * SheetColumns.COLUMN_COUNT],
                'fields': 'userEnteredValue',
            }
            for sheet_row in blank_sheet_rows
        )
        await self.store.batch_update_cells(self.sheet_name, updates)

    async def append_player(self, player: PlayerRow) -> None:
        """Write a new player into the sheet row given by ``player.sheet_row``."""
        await self.store.update_range(self.sheet_name, self._row_range(player, 'A', 'H'), [player.to_row()])
        self.logger.info(f"Added {player.display_name} at rank #{player.rank} (sheet row {player.sheet_row})")

    async def archive_player(self, player: PlayerRow) -> None:
        """Copy a departing player's row to the extended vacation sheet."""
        await self.store.append_range(self.vacation_sheet_name, SheetColumns.DATA_RANGE, [player.to_row()])
        self.logger.info(f"Archived {player.display_name} (rank #{player.rank}) to {self.vacation_sheet_name}")

    async def record_title_defense(self, player: PlayerRow) -> int:
        """Increment the rank-1 defense counter for a player; returns the new count."""
        rows = await self.store.get_range(self.metrics_sheet_name, SheetColumns.METRICS_RANGE)
        for index, row in enumerate(rows):
            if len(row) > 1 and str(row[1]).strip() == player.discord_id:
                try:
                    count = int(row[2]) + 1 if len(row) > 2 and str(row[2]).strip() else 1
                except ValueError:
                    count = 1
                line = index + 1
                await self.store.update_range(
                    self.metrics_sheet_name,
                    f"A{line}:C{line}",
                    [[player.display_name, player.discord_id, str(count)]]
                )
                self.logger.info(f"Title defense count for {player.display_name} is now {count}")
                return count

        await self.store.append_range(
            self.metrics_sheet_name,
            SheetColumns.METRICS_RANGE,
            [[player.display_name, player.discord_id, '1']]
        )
        self.logger.info(f"New title defender added to metrics: {player.display_name}")
        return 1
