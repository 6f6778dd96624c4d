"""
Report data structures returned by the sweep, sync and inspection passes.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.utils.exceptions import IntegrityFault

DATE_MISSING = 'missing'
DATE_UNPARSEABLE = 'unparseable'
DATE_EXPIRED = 'expired'


@dataclass(frozen=True)
class DateIssue:
    """A challenge row whose timestamp needs a human look."""
    rank: int
    display_name: str
    value: str
    reason: str = DATE_UNPARSEABLE
    age_days: Optional[float] = None


@dataclass(frozen=True)
class NullifiedPair:
    """A challenge pair reset to Available by the reconciler."""
    player: PlayerRow
    opponent: PlayerRow
    age_days: Optional[float] = None

    @property
    def ranks(self) -> Tuple[int, int]:
        return self.player.rank, self.opponent.rank


@dataclass
class SweepReport:
    nullified: List[NullifiedPair] = field(default_factory=list)
    parse_issues: List[DateIssue] = field(default_factory=list)
    integrity_faults: List[IntegrityFault] = field(default_factory=list)

    @property
    def has_findings(self) -> bool:
        return bool(self.nullified or self.parse_issues or self.integrity_faults)


@dataclass
class ChallengeInspection:
    """Read-only view of the challenge columns of the ladder."""
    valid_pairs: List[Tuple[PlayerRow, PlayerRow]] = field(default_factory=list)
    integrity_faults: List[IntegrityFault] = field(default_factory=list)
    date_issues: List[DateIssue] = field(default_factory=list)
    challenge_rows: int = 0

    @property
    def healthy(self) -> bool:
        return not self.integrity_faults and not self.date_issues


@dataclass
class SyncReport:
    """Outcome of rebuilding fast-store records from the ladder."""
    dry_run: bool = False
    synced: List[Tuple[int, int]] = field(default_factory=list)
    already_present: List[Tuple[int, int]] = field(default_factory=list)
    player_locks_created: int = 0
    orphaned_locks_removed: int = 0
    errors: List[str] = field(default_factory=list)
