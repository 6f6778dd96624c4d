"""
Ladder data models.

``PlayerRow`` is the typed view of one ladder sheet row; the sheet itself only
ever sees the positional string list produced by ``to_row``. The remaining
classes are the JSON payloads stored in the fast store.
"""

import json
from dataclasses import dataclass, replace, asdict
from enum import Enum
from typing import List, Optional, Sequence

from ladder_bot.constants import SheetColumns


class PlayerStatus(str, Enum):
    """Ladder status column values."""
    AVAILABLE = 'Available'
    CHALLENGE = 'Challenge'
    VACATION = 'Vacation'


def _cell(values: Sequence[str], index: int) -> str:
    if index < len(values) and values[index] is not None:
        return str(values[index]).strip()
    return ''


def parse_rank(value) -> Optional[int]:
    """Parse a rank cell; blank or non-numeric cells yield None."""
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PlayerRow:
    """One ranked player on the ladder."""
    rank: int
    display_name: str
    status: str
    challenge_timestamp: str = ''
    opponent_rank: Optional[int] = None
    discord_id: str = ''
    notes: str = ''
    cooldown_note: str = ''
    sheet_row: Optional[int] = None  # 1-based sheet row this player was read from

    @classmethod
    def from_row(cls, values: Sequence[str], sheet_row: Optional[int] = None) -> Optional['PlayerRow']:
        """Build a row from sheet values, or None when the rank cell is not a number."""
        rank = parse_rank(_cell(values, SheetColumns.RANK))
        if rank is None:
            return None
        return cls(
            rank=rank,
            display_name=_cell(values, SheetColumns.DISPLAY_NAME),
            status=_cell(values, SheetColumns.STATUS),
            challenge_timestamp=_cell(values, SheetColumns.CHALLENGE_DATE),
            opponent_rank=parse_rank(_cell(values, SheetColumns.OPPONENT_RANK)),
            discord_id=_cell(values, SheetColumns.DISCORD_ID),
            notes=_cell(values, SheetColumns.NOTES),
            cooldown_note=_cell(values, SheetColumns.COOLDOWN_NOTE),
            sheet_row=sheet_row,
        )

    def to_row(self) -> List[str]:
        """Serialize to the eight sheet columns A..H."""
        return [
            str(self.rank),
            self.display_name,
            self.status,
            self.challenge_timestamp or '',
            '' if self.opponent_rank is None else str(self.opponent_rank),
            self.discord_id,
            self.notes,
            self.cooldown_note,
        ]

    @property
    def is_available(self) -> bool:
        return self.status == PlayerStatus.AVAILABLE

    @property
    def in_challenge(self) -> bool:
        return self.status == PlayerStatus.CHALLENGE

    @property
    def on_vacation(self) -> bool:
        return self.status == PlayerStatus.VACATION

    def is_paired_with(self, other: 'PlayerRow') -> bool:
        """Both rows point at each other through their opponent rank."""
        return self.opponent_rank == other.rank and other.opponent_rank == self.rank

    def with_challenge(self, timestamp: str, opponent_rank: int) -> 'PlayerRow':
        return replace(
            self,
            status=PlayerStatus.CHALLENGE.value,
            challenge_timestamp=timestamp,
            opponent_rank=opponent_rank,
        )

    def cleared(self) -> 'PlayerRow':
        """Copy with the challenge columns reset to Available/empty/empty."""
        return replace(
            self,
            status=PlayerStatus.AVAILABLE.value,
            challenge_timestamp='',
            opponent_rank=None,
        )

    def to_ref(self) -> 'PlayerRef':
        return PlayerRef(discord_id=self.discord_id, name=self.display_name, rank=self.rank)


@dataclass(frozen=True)
class PlayerRef:
    """Identity snapshot stored inside fast-store records."""
    discord_id: str
    name: str
    rank: Optional[int] = None

    @classmethod
    def from_dict(cls, data: dict) -> 'PlayerRef':
        return cls(
            discord_id=str(data.get('discord_id', '')),
            name=data.get('name', ''),
            rank=parse_rank(data.get('rank')),
        )


@dataclass(frozen=True)
class ChallengeRecord:
    player1: PlayerRef
    player2: PlayerRef
    challenge_date: str
    start_time: int   # epoch ms
    expiry_time: int  # epoch ms

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> 'ChallengeRecord':
        data = json.loads(raw)
        return cls(
            player1=PlayerRef.from_dict(data['player1']),
            player2=PlayerRef.from_dict(data['player2']),
            challenge_date=data.get('challenge_date', ''),
            start_time=int(data.get('start_time', 0)),
            expiry_time=int(data.get('expiry_time', 0)),
        )


@dataclass(frozen=True)
class CooldownRecord:
    player1: PlayerRef
    player2: PlayerRef
    start_time: int
    expiry_time: int

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> 'CooldownRecord':
        data = json.loads(raw)
        return cls(
            player1=PlayerRef.from_dict(data['player1']),
            player2=PlayerRef.from_dict(data['player2']),
            start_time=int(data.get('start_time', 0)),
            expiry_time=int(data.get('expiry_time', 0)),
        )
