"""PlayerRow parsing and serialization."""

from ladder_bot.data_models.ladder import ChallengeRecord, PlayerRef, PlayerRow, parse_rank


def test_from_row_parses_all_columns():
    row = PlayerRow.from_row(
        ['3', 'Alice', 'Challenge', '6/15, 12:00 PM EDT', '5', '1003', 'main: Nox', 'cd'],
        sheet_row=4
    )

    assert row.rank == 3
    assert row.display_name == 'Alice'
    assert row.in_challenge
    assert row.challenge_timestamp == '6/15, 12:00 PM EDT'
    assert row.opponent_rank == 5
    assert row.discord_id == '1003'
    assert row.notes == 'main: Nox'
    assert row.cooldown_note == 'cd'
    assert row.sheet_row == 4


def test_from_row_tolerates_short_rows():
    row = PlayerRow.from_row(['7', 'Bob', 'Available'])

    assert row.opponent_rank is None
    assert row.discord_id == ''
    assert row.to_row() == ['7', 'Bob', 'Available', '', '', '', '', '']


def test_from_row_skips_non_numeric_rank():
    assert PlayerRow.from_row(['Rank', 'Name']) is None
    assert PlayerRow.from_row([]) is None


def test_parse_rank():
    assert parse_rank(' 12 ') == 12
    assert parse_rank('') is None
    assert parse_rank(None) is None
    assert parse_rank('x') is None


def test_cleared_keeps_identity_and_notes():
    row = PlayerRow(3, 'Alice', 'Challenge', '6/15, 12:00 PM EDT', 5, '1003', 'notes', '', 4)

    cleared = row.cleared()

    assert cleared.is_available
    assert cleared.challenge_timestamp == ''
    assert cleared.opponent_rank is None
    assert (cleared.display_name, cleared.discord_id, cleared.notes, cleared.sheet_row) == ('Alice', '1003', 'notes', 4)


def test_with_challenge_and_pairing():
    alice = PlayerRow(3, 'Alice', 'Available', discord_id='1003').with_challenge('ts', 5)
    bob = PlayerRow(5, 'Bob', 'Available', discord_id='1005').with_challenge('ts', 3)
    carol = PlayerRow(6, 'Carol', 'Available').with_challenge('ts', 3)

    assert alice.is_paired_with(bob)
    assert bob.is_paired_with(alice)
    assert not carol.is_paired_with(alice)


def test_challenge_record_json_keeps_identities():
    record = ChallengeRecord(
        player1=PlayerRef('1005', 'Bob', 5),
        player2=PlayerRef('1003', 'Alice', 3),
        challenge_date='6/15, 12:00 PM EDT',
        start_time=1000,
        expiry_time=2000
    )

    restored = ChallengeRecord.from_json(record.to_json())

    assert restored == record
