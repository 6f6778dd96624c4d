"""Read-only inspection of challenge pairings and dates."""

from datetime import datetime

import pytest
import pytz

from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.data_models.reports import DATE_EXPIRED, DATE_MISSING, DATE_UNPARSEABLE
from ladder_bot.operations.challenge_diagnostics import challenge_pairs, inspect_challenges, pair_fault

NOW = pytz.timezone('America/New_York').localize(datetime(2025, 6, 15, 12, 0))
FRESH = '6/14, 12:00 PM EDT'


def row(rank, status='Available', date='', opponent=None):
    return PlayerRow(rank=rank, display_name=f'Player{rank}', status=status,
                     challenge_timestamp=date, opponent_rank=opponent, discord_id=str(1000 + rank))


def challenged(rank, opponent, date=FRESH):
    return row(rank, 'Challenge', date, opponent)


def test_challenge_pairs_dedupes_and_orders():
    players = [
        challenged(1, 2), challenged(2, 1),
        row(3),
        challenged(4, 5), challenged(5, 4),
        challenged(8, 9), row(9),
    ]

    pairs = challenge_pairs(players)

    assert [(a.rank, b.rank) for a, b in pairs] == [(2, 1), (5, 4)]


@pytest.mark.parametrize('players, fragment', [
    ([row(3, 'Challenge', FRESH, None)], 'no opponent rank'),
    ([challenged(3, 20)], 'not on the ladder'),
    ([challenged(3, 4), row(4, 'Vacation')], 'has status Vacation'),
    ([challenged(3, 4), challenged(4, 6), challenged(6, 4)], 'points at #6 instead'),
])
def test_pair_fault_cases(players, fragment):
    by_rank = {p.rank: p for p in players}

    fault = pair_fault(players[0], by_rank)

    assert fault is not None
    assert fragment in fault.detail
    assert fault.rank == 3


def test_pair_fault_none_for_mutual_pair():
    players = [challenged(3, 4), challenged(4, 3)]

    assert pair_fault(players[0], {p.rank: p for p in players}) is None


def test_inspect_collects_faults_and_date_issues():
    players = [
        challenged(1, 2, ''), challenged(2, 1, ''),
        challenged(4, 5, 'soon'), challenged(5, 4, 'soon'),
        challenged(6, 7, '6/11, 12:00 PM EDT'), challenged(7, 6, '6/11, 12:00 PM EDT'),
        challenged(8, 9), row(9),
        row(10),
    ]

    inspection = inspect_challenges(players, NOW)

    assert inspection.challenge_rows == 7
    assert len(inspection.valid_pairs) == 3
    assert [(f.rank, f.opponent_rank) for f in inspection.integrity_faults] == [(8, 9)]
    reasons = {issue.rank: issue.reason for issue in inspection.date_issues}
    assert reasons == {
        1: DATE_MISSING, 2: DATE_MISSING,
        4: DATE_UNPARSEABLE, 5: DATE_UNPARSEABLE,
        6: DATE_EXPIRED, 7: DATE_EXPIRED,
    }
    expired = next(issue for issue in inspection.date_issues if issue.rank == 6)
    assert expired.age_days == pytest.approx(4.0)
    assert not inspection.healthy


def test_inspect_healthy_ladder():
    inspection = inspect_challenges([challenged(3, 4), challenged(4, 3), row(5)], NOW)

    assert inspection.healthy
    assert inspection.challenge_rows == 2
