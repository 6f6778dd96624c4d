"""Issue, report, extend and cancel through the lifecycle manager."""

import asyncio

import pytest

from ladder_bot.data_models.ladder import PlayerRef
from ladder_bot.services.challenge_store import PLAYER_BUSY, challenge_key
from ladder_bot.utils.exceptions import (
    ConflictError, CooldownActiveError, ExternalStoreError, InvalidDirectionError, InvalidPairError,
    JumpTooLargeError, LockHeldError, NotFoundError, PermissionDeniedError, PlayerUnavailableError,
    UnparseableDateError, ValidationError
)
from tests.helpers import METRICS_SHEET

NOW_TEXT = '6/15, 12:00 PM EDT'


async def issue(manager, challenger_rank, target_rank):
    result = await manager.evaluate_and_issue_challenge(challenger_rank, target_rank, str(1000 + challenger_rank))
    assert result.success, result.message
    return result


def ladder_writes(ladder_store):
    return [call for call in ladder_store.calls if call[0] != 'get']


# Issue

async def test_issue_marks_both_rows_and_records_challenge(manager, ladder_store, store, notifier):
    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert result.success
    assert result.data['timestamp'] == NOW_TEXT
    assert result.data['challenge_key'] == 'nvd:challenge:4:5'
    assert ladder_store.row(5)[2:5] == ['Challenge', NOW_TEXT, '4']
    assert ladder_store.row(4)[2:5] == ['Challenge', NOW_TEXT, '5']

    record = await store.get_challenge(4, 5)
    assert record.player1 == PlayerRef('1005', 'Player5', 5)
    assert record.challenge_date == NOW_TEXT
    assert await store.challenge_ttl(4, 5) == 259200
    for discord_id in ('1004', '1005'):
        lock = await store.check_player_lock(discord_id)
        assert lock.challenge_key == 'nvd:challenge:4:5'

    assert len(notifier.embeds) == 1
    assert notifier.messages == ['<@1004>, you have been challenged by **Player5** (Rank #5)!']


async def test_issue_releases_processing_lock(manager, redis_client):
    await issue(manager, 5, 4)

    assert await redis_client.get('nvd:lock:processing:4:5') is None


async def test_issue_for_someone_elses_rank_is_refused(manager, ladder_store):
    result = await manager.evaluate_and_issue_challenge(5, 4, '1009')

    assert not result.success
    assert isinstance(result.error, PermissionDeniedError)
    assert result.message == "You can only initiate challenges for your own rank."
    assert ladder_writes(ladder_store) == []


async def test_admin_may_issue_for_any_rank(manager, ladder_store):
    result = await manager.evaluate_and_issue_challenge(5, 4, '1', requester_is_privileged=True)

    assert result.success
    assert ladder_store.row(4)[2] == 'Challenge'


async def test_jump_too_large_is_refused_without_writes(manager, ladder_store):
    result = await manager.evaluate_and_issue_challenge(8, 5, '1008')

    assert isinstance(result.error, JumpTooLargeError)
    assert ladder_writes(ladder_store) == []


async def test_unknown_rank_is_not_found(manager):
    result = await manager.evaluate_and_issue_challenge(14, 12, '1014')

    assert isinstance(result.error, NotFoundError)
    assert result.message == "One or both ranks were not found on the leaderboard."


async def test_cooldown_reports_remaining_hours_rounded_up(manager, store, clock, ladder_store):
    await store.set_cooldown(PlayerRef('1004', 'Player4', 4), PlayerRef('1005', 'Player5', 5))
    clock.advance(hours=2, minutes=30)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, CooldownActiveError)
    assert result.error.remaining_hours == 22
    assert result.message == "You cannot challenge this player yet. Cooldown remains for 22 hours."
    assert ladder_writes(ladder_store) == []


async def test_existing_challenge_record_is_a_conflict(manager, store):
    await store.set_challenge(PlayerRef('1005', 'Player5', 5), PlayerRef('1004', 'Player4', 4), NOW_TEXT, 3600)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, ConflictError)
    assert result.message == "A challenge already exists between these players."


@pytest.mark.parametrize('rank, message', [
    (5, "Challenge failed: You are not available for challenges."),
    (4, "Challenge failed: Your target is not available for challenges."),
])
async def test_unavailable_player_is_refused(manager, ladder_store, rank, message):
    ladder_store.set_player(rank, status='Vacation')

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, PlayerUnavailableError)
    assert result.message == message


async def test_target_already_challenged_by_third_player(manager, ladder_store):
    ladder_store.set_player(6, status='Challenge', date=NOW_TEXT, opponent=4)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, ConflictError)
    assert result.message == "Target player is already being challenged by someone else."


async def test_challenger_already_challenged_by_third_player(manager, ladder_store):
    ladder_store.set_player(7, status='Challenge', date=NOW_TEXT, opponent=5)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, ConflictError)
    assert result.message == "You cannot issue a challenge while you are already being challenged by someone else."


async def test_pair_being_processed_is_refused(manager, redis_client, ladder_store):
    await redis_client.set('nvd:lock:processing:4:5', 'other', ex=30)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, LockHeldError)
    assert 'already being processed' in result.message
    assert ladder_writes(ladder_store) == []


async def test_concurrent_challenges_against_one_target_issue_once(manager, ladder_store, redis_client):
    ladder_store.yield_reads = True

    first, second = await asyncio.gather(
        manager.evaluate_and_issue_challenge(5, 4, '1005'),
        manager.evaluate_and_issue_challenge(6, 4, '1006'),
    )

    assert first.success
    assert not second.success
    assert isinstance(second.error, LockHeldError)
    assert second.message == PLAYER_BUSY
    assert ladder_store.row(4)[2:5] == ['Challenge', NOW_TEXT, '5']
    assert ladder_store.row(5)[2:5] == ['Challenge', NOW_TEXT, '4']
    assert ladder_store.row(6)[2:5] == ['Available', '', '']
    for key in ('nvd:lock:processing:4:5', 'nvd:lock:processing:4:6', 'nvd:lock:rank:4', 'nvd:lock:rank:6'):
        assert await redis_client.get(key) is None


async def test_invalid_direction_reported_even_while_pair_is_processed(manager, redis_client, ladder_store):
    await redis_client.set('nvd:lock:processing:4:5', 'other', ex=30)

    result = await manager.evaluate_and_issue_challenge(4, 5, '1004')

    assert isinstance(result.error, InvalidDirectionError)
    assert ladder_writes(ladder_store) == []


async def test_ladder_failure_aborts_without_fast_store_records(manager, ladder_store, store, redis_client):
    ladder_store.fail_writes = True

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, ExternalStoreError)
    assert result.message == "Unable to reach the ladder right now. Please try again later."
    assert not await store.challenge_exists(4, 5)
    assert await redis_client.get('nvd:lock:processing:4:5') is None


async def test_fast_store_failure_before_write_fails_closed(manager, redis_client, ladder_store):
    redis_client.fail_prefixes.append('nvd:cooldown:')

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert isinstance(result.error, ExternalStoreError)
    assert ladder_writes(ladder_store) == []


async def test_player_lock_failure_after_write_still_succeeds(manager, redis_client, ladder_store, store):
    redis_client.fail_prefixes.append('nvd:lock:player:')

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert result.success
    assert ladder_store.row(5)[2] == 'Challenge'
    assert await store.challenge_exists(4, 5)


# Report result

async def test_climb_swaps_identities_and_keeps_rank_numbers(manager, ladder_store, store, notifier):
    ladder_store.set_player(5, notes='climber notes')
    ladder_store.set_player(4, notes='defender notes')
    await issue(manager, 5, 4)

    result = await manager.report_result(5, 4, '1005')

    assert result.success
    assert result.data['is_defense'] is False
    assert ladder_store.row(4) == ['4', 'Player5', 'Available', '', '', '1005', 'climber notes', '']
    assert ladder_store.row(5) == ['5', 'Player4', 'Available', '', '', '1004', 'defender notes', '']
    assert result.data['winner'].rank == 4
    assert result.data['loser'].rank == 5

    cooldown = await store.check_cooldown('1004', '1005')
    assert cooldown.on_cooldown
    assert cooldown.remaining_seconds == 86400
    assert not await store.challenge_exists(4, 5)
    assert await store.check_player_lock('1004') is None
    assert await store.check_player_lock('1005') is None
    assert len(notifier.embeds) == 2


async def test_defense_keeps_ranks_and_resets_status(manager, ladder_store, store):
    await issue(manager, 5, 4)

    result = await manager.report_result(4, 5, '1005')

    assert result.success
    assert result.data['is_defense'] is True
    assert result.data['title_defenses'] is None
    assert ladder_store.row(4)[:6] == ['4', 'Player4', 'Available', '', '', '1004']
    assert ladder_store.row(5)[:6] == ['5', 'Player5', 'Available', '', '', '1005']
    assert (await store.check_cooldown('1005', '1004')).on_cooldown


async def test_rank_one_defense_increments_metrics(manager, ladder_store):
    ladder_store.sheets[METRICS_SHEET].append(['Player1', '1001', '4'])
    await issue(manager, 2, 1)

    result = await manager.report_result(1, 2, '1001')

    assert result.data['title_defenses'] == 5
    assert ladder_store.sheets[METRICS_SHEET][1] == ['Player1', '1001', '5']


async def test_first_rank_one_defense_appends_metrics_row(manager, ladder_store):
    await issue(manager, 2, 1)

    result = await manager.report_result(1, 2, '1002')

    assert result.data['title_defenses'] == 1
    assert ladder_store.sheets[METRICS_SHEET][-1] == ['Player1', '1001', '1']


async def test_result_for_players_not_in_challenge(manager):
    result = await manager.report_result(5, 4, '1005')

    assert isinstance(result.error, PlayerUnavailableError)
    assert result.message == "Both players must be in a challenge to report a result."


async def test_result_for_unpaired_players(manager, ladder_store):
    ladder_store.pair(4, 5, NOW_TEXT)
    ladder_store.pair(6, 7, NOW_TEXT)

    result = await manager.report_result(6, 5, '1', requester_is_privileged=True)

    assert isinstance(result.error, InvalidPairError)
    assert ladder_store.row(5)[2] == 'Challenge'


async def test_result_by_outsider_is_refused(manager):
    await issue(manager, 5, 4)

    result = await manager.report_result(5, 4, '1009')

    assert isinstance(result.error, PermissionDeniedError)


async def test_result_with_same_rank_is_invalid(manager):
    result = await manager.report_result(4, 4, '1004')

    assert isinstance(result.error, ValidationError)


async def test_cooldown_failure_does_not_undo_result(manager, ladder_store, store, redis_client):
    await issue(manager, 5, 4)
    redis_client.fail_prefixes.append('nvd:cooldown:')

    result = await manager.report_result(5, 4, '1005')

    assert result.success
    assert ladder_store.row(4)[1] == 'Player5'
    assert not await store.challenge_exists(4, 5)
    assert not any(key.startswith('nvd:cooldown:') for key in redis_client.data)


# Extend

async def test_extend_moves_date_two_days(manager, ladder_store, store, redis_client, notifier):
    await issue(manager, 5, 4)

    result = await manager.extend_challenge('5', requester_is_privileged=True)

    assert result.success
    assert result.data['previous_timestamp'] == NOW_TEXT
    assert result.data['new_timestamp'] == '6/17, 12:00 PM EDT'
    assert ladder_store.row(4)[3] == '6/17, 12:00 PM EDT'
    assert ladder_store.row(5)[3] == '6/17, 12:00 PM EDT'
    assert result.data['ttl'] == 432000
    assert await store.challenge_ttl(4, 5) == 432000
    assert await redis_client.ttl('nvd:warning:4:5') == 345600
    assert (await store.get_challenge(4, 5)).challenge_date == '6/17, 12:00 PM EDT'
    assert len(notifier.embeds) == 2


async def test_extend_keeps_stored_timezone_suffix(manager, ladder_store):
    ladder_store.pair(4, 5, '6/14, 3:00 PM EST')

    result = await manager.extend_challenge('4', requester_is_privileged=True)

    assert result.data['new_timestamp'] == '6/16, 3:00 PM EST'


async def test_extend_by_display_name(manager, ladder_store):
    ladder_store.pair(4, 5, NOW_TEXT)

    result = await manager.extend_challenge('player4', requester_is_privileged=True)

    assert result.success
    assert result.data['opponent'].rank == 5


async def test_extend_with_unparseable_date(manager, ladder_store):
    ladder_store.pair(4, 5, 'sometime soon')

    result = await manager.extend_challenge('4', requester_is_privileged=True)

    assert isinstance(result.error, UnparseableDateError)
    assert ladder_store.row(4)[3] == 'sometime soon'


async def test_extend_half_pair_is_invalid(manager, ladder_store):
    ladder_store.set_player(5, status='Challenge', date=NOW_TEXT, opponent=4)

    result = await manager.extend_challenge('5', requester_is_privileged=True)

    assert isinstance(result.error, InvalidPairError)


async def test_extend_requires_admin(manager, ladder_store):
    ladder_store.pair(4, 5, NOW_TEXT)

    result = await manager.extend_challenge('4')

    assert isinstance(result.error, PermissionDeniedError)


async def test_extend_unknown_player(manager):
    result = await manager.extend_challenge('Nobody', requester_is_privileged=True)

    assert isinstance(result.error, NotFoundError)


# Cancel

async def test_cancel_resets_pair_and_fast_store(manager, ladder_store, store):
    await issue(manager, 5, 4)

    result = await manager.cancel_challenge('4', requester_is_privileged=True)

    assert result.success
    assert len(result.data['cleared']) == 2
    assert ladder_store.row(4)[2:5] == ['Available', '', '']
    assert ladder_store.row(5)[2:5] == ['Available', '', '']
    assert not await store.challenge_exists(4, 5)
    assert await store.check_player_lock('1004') is None


async def test_cancel_half_pair_clears_only_pointing_row(manager, ladder_store):
    ladder_store.pair(4, 6, NOW_TEXT)
    ladder_store.set_player(5, status='Challenge', date=NOW_TEXT, opponent=4)

    result = await manager.cancel_challenge('5', requester_is_privileged=True)

    assert result.success
    assert [row.rank for row in result.data['cleared']] == [5]
    assert ladder_store.row(5)[2:5] == ['Available', '', '']
    assert ladder_store.row(4)[2:5] == ['Challenge', NOW_TEXT, '6']
    assert ladder_store.row(6)[2:5] == ['Challenge', NOW_TEXT, '4']


async def test_cancel_player_not_in_challenge(manager):
    result = await manager.cancel_challenge('5', requester_is_privileged=True)

    assert isinstance(result.error, PlayerUnavailableError)
    assert result.message == "Player5 is not currently in a challenge."


async def test_issue_after_cancel_is_allowed(manager, store):
    await issue(manager, 5, 4)
    await manager.cancel_challenge('5', requester_is_privileged=True)

    result = await manager.evaluate_and_issue_challenge(5, 4, '1005')

    assert result.success
    assert await store.challenge_exists(4, 5)
    assert challenge_key(5, 4) == result.data['challenge_key']


# Membership

def ref(rank):
    return PlayerRef(str(1000 + rank), f'Player{rank}', rank)


async def test_register_adds_player_below_last_rank(manager, ladder_store, notifier):
    result = await manager.register_player('Newbie', 2001, notes='alt of Player3', requester_is_privileged=True)

    assert result.success
    assert result.data['player'].rank == 13
    assert ladder_store.row(13) == ['13', 'Newbie', 'Available', '', '', '2001', 'alt of Player3', '']
    assert [embed.title for embed in notifier.embeds] == ['✨ New Player Registered to NvD Ladder! ✨']


async def test_register_same_name_is_a_conflict(manager, ladder_store):
    result = await manager.register_player('player3', 2001, requester_is_privileged=True)

    assert isinstance(result.error, ConflictError)
    assert result.message == "This Discord user already has a character on the NvD ladder."
    assert ladder_writes(ladder_store) == []


async def test_register_requires_admin(manager, ladder_store):
    result = await manager.register_player('Newbie', 2001)

    assert isinstance(result.error, PermissionDeniedError)
    assert ladder_writes(ladder_store) == []


async def test_remove_closes_gap_and_rekeys_challenges(manager, ladder_store, store, redis_client, notifier):
    for a, b in ((2, 6), (4, 5), (7, 8)):
        ladder_store.pair(a, b, NOW_TEXT)
        key = await store.set_challenge(ref(b), ref(a), NOW_TEXT, 259200)
        for rank in (a, b):
            await store.set_player_lock(str(1000 + rank), key, 259200)

    result = await manager.remove_player(4, requester_is_privileged=True)

    assert result.success, result.message
    assert ladder_store.sheets['Extended Vacation'] == [
        ['4', 'Player4', 'Challenge', NOW_TEXT, '5', '1004', '', '']
    ]
    assert ladder_store.row(2)[2:5] == ['Challenge', NOW_TEXT, '5']
    assert ladder_store.row(4) == ['4', 'Player5', 'Available', '', '', '1005', '', '']
    assert ladder_store.row(5) == ['5', 'Player6', 'Challenge', NOW_TEXT, '2', '1006', '', '']
    assert ladder_store.row(6) == ['6', 'Player7', 'Challenge', NOW_TEXT, '7', '1007', '', '']
    assert ladder_store.row(7) == ['7', 'Player8', 'Challenge', NOW_TEXT, '6', '1008', '', '']
    assert ladder_store.row(11) == ['11', 'Player12', 'Available', '', '', '1012', '', '']
    assert ladder_store.row(12) == [''] * 8

    assert not await store.challenge_exists(4, 5)
    assert result.data['moved_challenges'] == [((2, 6), (2, 5)), ((7, 8), (6, 7))]
    assert (await store.get_challenge(2, 5)).player1 == PlayerRef('1006', 'Player6', 5)
    assert await store.challenge_exists(6, 7)
    assert not await store.challenge_exists(7, 8)
    assert await store.check_player_lock('1004') is None
    assert await store.check_player_lock('1005') is None
    assert (await store.check_player_lock('1006')).challenge_key == challenge_key(2, 5)
    assert await redis_client.get('nvd:lock:rank:4') is None

    assert result.data['freed_opponent'].display_name == 'Player5'
    assert [embed.title for embed in notifier.embeds] == ['👋 Farewell from the NvD Ladder!']


async def test_register_after_remove_fills_vacated_row(manager, ladder_store):
    await manager.remove_player(4, requester_is_privileged=True)

    result = await manager.register_player('Newbie', 2001, requester_is_privileged=True)

    assert result.data['player'].rank == 12
    assert ladder_store.row(12)[:3] == ['12', 'Newbie', 'Available']
    assert len(ladder_store.sheets['NvD Ladder']) == 13


async def test_remove_unknown_rank(manager):
    result = await manager.remove_player(20, requester_is_privileged=True)

    assert isinstance(result.error, NotFoundError)
    assert result.message == "Rank not found in the ladder."


async def test_remove_requires_admin(manager, ladder_store):
    result = await manager.remove_player(4)

    assert isinstance(result.error, PermissionDeniedError)
    assert ladder_writes(ladder_store) == []


async def test_remove_waits_for_challenges_below(manager, ladder_store, redis_client):
    await redis_client.set('nvd:lock:rank:9', 'other')

    result = await manager.remove_player(4, requester_is_privileged=True)

    assert isinstance(result.error, LockHeldError)
    assert result.message == "The ladder is being updated. Please try again in a moment."
    assert ladder_writes(ladder_store) == []
    assert await redis_client.get('nvd:lock:rank:4') is None


async def test_remove_still_succeeds_when_fast_store_is_down(manager, ladder_store, redis_client):
    ladder_store.pair(7, 8, NOW_TEXT)
    redis_client.data['nvd:challenge:7:8'] = ('{}', None)
    redis_client.fail_prefixes = ['nvd:challenge', 'nvd:lock:player']

    result = await manager.remove_player(4, requester_is_privileged=True)

    assert result.success
    assert result.data['moved_challenges'] == []
    assert ladder_store.row(6)[:5] == ['6', 'Player7', 'Challenge', NOW_TEXT, '7']
