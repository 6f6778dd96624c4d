"""
Read-only inspection of the challenge columns of the ladder.

Finds pairing faults (a row pointing at an opponent that does not point
back) and date problems. Nothing here writes; faults are reported for an
admin to fix by hand or through cancel.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.data_models.reports import (
    DATE_EXPIRED, DATE_MISSING, DATE_UNPARSEABLE, ChallengeInspection, DateIssue
)
from ladder_bot.utils.challenge_dates import challenge_age_days, is_challenge_expired, ladder_now, parse_challenge_date
from ladder_bot.utils.exceptions import IntegrityFault
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


def pair_fault(row: PlayerRow, players_by_rank: dict) -> Optional[IntegrityFault]:
    """The pairing fault of a Challenge row, or None if its opponent points back."""
    if row.opponent_rank is None:
        return IntegrityFault(row.rank, None, f"#{row.rank} {row.display_name} is in Challenge with no opponent rank")

    opponent = players_by_rank.get(row.opponent_rank)
    if opponent is None:
        return IntegrityFault(row.rank, row.opponent_rank, f"opponent #{row.opponent_rank} is not on the ladder")
    if not opponent.in_challenge:
        return IntegrityFault(
            row.rank, row.opponent_rank,
            f"opponent #{opponent.rank} {opponent.display_name} has status {opponent.status or 'empty'}"
        )
    if opponent.opponent_rank != row.rank:
        return IntegrityFault(
            row.rank, row.opponent_rank,
            f"opponent #{opponent.rank} points at #{opponent.opponent_rank} instead"
        )
    return None


def challenge_pairs(players: Iterable[PlayerRow]) -> List[Tuple[PlayerRow, PlayerRow]]:
    """Mutually paired Challenge rows, once per pair, higher rank number first."""
    players = list(players)
    by_rank = {p.rank: p for p in players}
    pairs, seen = [], set()
    for row in players:
        if not row.in_challenge or pair_fault(row, by_rank) is not None:
            continue
        key = frozenset((row.rank, row.opponent_rank))
        if key in seen:
            continue
        seen.add(key)
        opponent = by_rank[row.opponent_rank]
        pairs.append((row, opponent) if row.rank > opponent.rank else (opponent, row))
    return sorted(pairs, key=lambda pair: pair[1].rank)


def date_issue(row: PlayerRow, now: datetime) -> Optional[DateIssue]:
    value = row.challenge_timestamp
    if not value:
        return DateIssue(row.rank, row.display_name, value, DATE_MISSING)
    start = parse_challenge_date(value, now)
    if start is None:
        return DateIssue(row.rank, row.display_name, value, DATE_UNPARSEABLE)
    if is_challenge_expired(start, now):
        return DateIssue(row.rank, row.display_name, value, DATE_EXPIRED, challenge_age_days(start, now))
    return None


def inspect_challenges(players: Iterable[PlayerRow], now: Optional[datetime] = None) -> ChallengeInspection:
    """
    Inspect every Challenge row of a ladder snapshot.

    Args:
        players: Ladder snapshot
        now: Reference time for date checks; defaults to the ladder clock

    Returns:
        ChallengeInspection with valid pairs, pairing faults and date issues
    """
    now = now or ladder_now()
    players = list(players)
    by_rank = {p.rank: p for p in players}
    inspection = ChallengeInspection(valid_pairs=challenge_pairs(players))

    for row in players:
        if not row.in_challenge:
            continue
        inspection.challenge_rows += 1

        fault = pair_fault(row, by_rank)
        if fault is not None:
            logger.warning(f"Integrity fault: {fault}")
            inspection.integrity_faults.append(fault)

        issue = date_issue(row, now)
        if issue is not None:
            inspection.date_issues.append(issue)

    return inspection
