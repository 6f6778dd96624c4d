"""
Expiry reconciler.

Turns lapsed fast-store records into ladder changes. Two paths lead to the
same idempotent ``null_challenge_pair``:

* keyspace expiry events (warning and challenge keys), handled after a short
  settle delay;
* the sweep, which reads the ladder directly and nullifies every pair older
  than the challenge lifetime.

The sweep alone is enough for correctness; the event path makes expiry
prompt when the Redis server publishes expiry events.
"""

import asyncio
from typing import Callable, Optional, Set

from ladder_bot.config import Config
from ladder_bot.constants import KeyPrefixes
from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.data_models.reports import (
    DATE_MISSING, DATE_UNPARSEABLE, DateIssue, NullifiedPair, SweepReport, SyncReport
)
from ladder_bot.operations.challenge_diagnostics import challenge_pairs, inspect_challenges
from ladder_bot.services.challenge_store import ChallengeStore, challenge_key, parse_pair_key
from ladder_bot.services.ladder import LadderRepository
from ladder_bot.services.notifier import Notifier
from ladder_bot.utils.challenge_dates import (
    challenge_age_days, is_challenge_expired, ladder_now, parse_challenge_date, ttl_from_challenge_date
)
from ladder_bot.utils.embeds import build_auto_null_embed, build_sweep_summary_embed, build_warning_message
from ladder_bot.utils.exceptions import ExternalStoreError, LadderError, LockHeldError
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class ExpiryReconciler:
    """Applies challenge expiry to the ladder exactly once per pair."""

    def __init__(self, ladder: LadderRepository, store: ChallengeStore, notifier: Notifier,
                 clock: Callable = ladder_now, settle_seconds: Optional[float] = None,
                 sleep: Callable = asyncio.sleep):
        self.ladder = ladder
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.settle_seconds = Config.EXPIRY_SETTLE_SECONDS if settle_seconds is None else settle_seconds
        self.sleep = sleep
        self._pending: Set[asyncio.Task] = set()
        self.logger = setup_logger(f"{__name__}.ExpiryReconciler")

    async def _notify(self, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            self.logger.error(f"Announcement failed: {e}", exc_info=True)

    async def null_challenge_pair(self, rank_a: int, rank_b: int, announce: bool = True,
                                  age_days: Optional[float] = None) -> Optional[NullifiedPair]:
        """
        Reset a challenge pair to Available.

        Only rows still in Challenge and pointing at the other rank are reset,
        so calling this twice, or after a cancel or result, changes nothing.

        Returns:
            The nullified pair, or None when there was nothing to reset
        """
        async with self.store.pair_lock(rank_a, rank_b):
            players = await self.ladder.fetch_players()
            first = self.ladder.find_by_rank(players, rank_a)
            second = self.ladder.find_by_rank(players, rank_b)

            to_reset = [
                row for row, other_rank in ((first, rank_b), (second, rank_a))
                if row is not None and row.in_challenge and row.opponent_rank == other_rank
            ]
            if to_reset:
                await self.ladder.clear_challenges(to_reset)

            try:
                await self.store.remove_challenge(rank_a, rank_b)
                for row in to_reset:
                    await self.store.remove_player_lock(row.discord_id)
            except ExternalStoreError as e:
                self.logger.error(f"Fast-store cleanup for #{rank_a}/#{rank_b} failed: {e}", exc_info=True)

        if not to_reset:
            self.logger.debug(f"Nothing to nullify for #{rank_a}/#{rank_b}")
            return None

        pair = NullifiedPair(
            player=first or PlayerRow(rank=rank_a, display_name='Unknown', status=''),
            opponent=second or PlayerRow(rank=rank_b, display_name='Unknown', status=''),
            age_days=age_days
        )
        self.logger.info(f"Nullified challenge #{rank_a} vs #{rank_b} ({len(to_reset)} rows reset)")
        if announce:
            await self._notify(self.notifier.announce_embed(build_auto_null_embed(pair)))
        return pair

    # Event path

    async def handle_expired_key(self, key: str) -> None:
        """Dispatch one expired key after the settle delay."""
        await self.sleep(self.settle_seconds)
        if key.startswith(KeyPrefixes.WARNING):
            await self.handle_warning_expiry(key)
        elif key.startswith(KeyPrefixes.CHALLENGE):
            await self.handle_challenge_expiry(key)

    async def handle_warning_expiry(self, key: str) -> bool:
        """Send the 24-hours-left notice once; returns True if it was sent."""
        pair = parse_pair_key(key, KeyPrefixes.WARNING)
        if pair is None:
            self.logger.warning(f"Ignoring malformed warning key {key}")
            return False

        record = await self.store.get_challenge(*pair)
        if record is None:
            self.logger.info(f"Challenge for {key} no longer exists, skipping warning")
            return False
        if await self.store.challenge_ttl(*pair) <= 0:
            self.logger.info(f"Challenge for {key} is expiring, skipping warning")
            return False
        if not await self.store.acquire_warning_lock(*pair):
            self.logger.info(f"Warning for #{pair[0]}/#{pair[1]} already sent")
            return False

        await self.notifier.announce(
            build_warning_message(record.player1.discord_id, record.player2.discord_id)
        )
        self.logger.info(f"Sent expiry warning for #{pair[0]} vs #{pair[1]}")
        return True

    async def handle_challenge_expiry(self, key: str) -> Optional[NullifiedPair]:
        pair = parse_pair_key(key, KeyPrefixes.CHALLENGE)
        if pair is None:
            self.logger.warning(f"Ignoring malformed challenge key {key}")
            return None
        if await self.store.challenge_exists(*pair):
            # Re-created since the event was published (extend, sync)
            self.logger.info(f"Challenge {key} exists again, skipping auto-null")
            return None
        return await self.null_challenge_pair(*pair, announce=True)

    async def _process_expired_key(self, key: str) -> None:
        try:
            await self.handle_expired_key(key)
        except LockHeldError:
            self.logger.info(f"Skipping expiry of {key}: pair is being processed")
        except LadderError as e:
            self.logger.error(f"Failed to handle expiry of {key}: {e}", exc_info=True)
        except Exception as e:
            self.logger.error(f"Unexpected error handling expiry of {key}: {e}", exc_info=True)

    async def listen_for_expirations(self, pubsub, channel: str) -> None:
        """
        Consume expired-key events until cancelled.

        Each event is handled in its own task so the settle delay does not
        hold up the subscription. Handlers still in flight when the listener
        is cancelled are cancelled and awaited with it.
        """
        await pubsub.subscribe(channel)
        self.logger.info(f"Listening for key expirations on {channel}")
        try:
            async for message in pubsub.listen():
                if message.get('type') != 'message':
                    continue
                key = message.get('data')
                if isinstance(key, bytes):
                    key = key.decode()
                if not isinstance(key, str) or not key.startswith((KeyPrefixes.CHALLENGE, KeyPrefixes.WARNING)):
                    continue
                task = asyncio.create_task(self._process_expired_key(key))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
        except asyncio.CancelledError:
            pending = list(self._pending)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            raise
        finally:
            await pubsub.unsubscribe(channel)

    # Sweep path

    async def sweep_expired_challenges(self, announce: bool = True, automatic: bool = True) -> SweepReport:
        """
        Nullify every challenge pair older than the challenge lifetime.

        Rows with a missing or unparseable date are reported as parse issues
        and never nullified, and neither is their partner. Pairing faults are
        reported as found.
        """
        now = self.clock()
        players = await self.ladder.fetch_players()
        by_rank = {p.rank: p for p in players}
        report = SweepReport()
        seen = set()

        def _unparseable(row: PlayerRow) -> bool:
            return parse_challenge_date(row.challenge_timestamp, now) is None

        for row in players:
            if not row.in_challenge:
                continue

            start = parse_challenge_date(row.challenge_timestamp, now)
            if start is None:
                reason = DATE_UNPARSEABLE if row.challenge_timestamp else DATE_MISSING
                self.logger.warning(
                    f"Sweep: rank {row.rank} {row.display_name} has {reason} challenge date "
                    f"{row.challenge_timestamp!r}"
                )
                report.parse_issues.append(DateIssue(row.rank, row.display_name, row.challenge_timestamp, reason))
                continue

            if row.opponent_rank is None or not is_challenge_expired(start, now):
                continue

            pair_key = frozenset((row.rank, row.opponent_rank))
            if pair_key in seen:
                continue
            seen.add(pair_key)

            opponent = by_rank.get(row.opponent_rank)
            if opponent is not None and opponent.in_challenge and opponent.opponent_rank == row.rank \
                    and _unparseable(opponent):
                continue

            try:
                pair = await self.null_challenge_pair(
                    row.rank, row.opponent_rank, announce=False, age_days=challenge_age_days(start, now)
                )
            except LockHeldError:
                self.logger.info(f"Sweep: #{row.rank}/#{row.opponent_rank} is being processed, skipping")
                continue
            if pair is not None:
                report.nullified.append(pair)

        report.integrity_faults = inspect_challenges(players, now).integrity_faults

        self.logger.info(
            f"Sweep complete: {len(report.nullified)} nullified, {len(report.parse_issues)} parse issues, "
            f"{len(report.integrity_faults)} integrity faults"
        )
        if announce and (report.nullified or report.parse_issues):
            await self._notify(self.notifier.announce_embed(build_sweep_summary_embed(report, automatic=automatic)))
        return report

    # Startup sync

    async def sync_existing_challenges(self, dry_run: bool = False) -> SyncReport:
        """
        Rebuild missing challenge records and player locks from the ladder.

        TTLs come from the ladder date, so a pair that is already past its
        lifetime gets a short-lived record and is nullified when it lapses.
        """
        now = self.clock()
        players = await self.ladder.fetch_players()
        report = SyncReport(dry_run=dry_run)

        for challenger, challenged in challenge_pairs(players):
            ranks = (challenger.rank, challenged.rank)
            timestamp = challenger.challenge_timestamp
            ttl = ttl_from_challenge_date(timestamp, now)
            try:
                if await self.store.challenge_exists(*ranks):
                    report.already_present.append(ranks)
                else:
                    report.synced.append(ranks)
                    if not dry_run:
                        await self.store.set_challenge(challenger.to_ref(), challenged.to_ref(), timestamp, ttl)

                for row in (challenger, challenged):
                    if not row.discord_id or await self.store.check_player_lock(row.discord_id):
                        continue
                    report.player_locks_created += 1
                    if not dry_run:
                        await self.store.set_player_lock(row.discord_id, challenge_key(*ranks), ttl)
            except ExternalStoreError as e:
                self.logger.error(f"Sync of #{ranks[0]} vs #{ranks[1]} failed: {e}", exc_info=True)
                report.errors.append(f"#{ranks[0]} vs #{ranks[1]}: {e.operation}")

        if not dry_run:
            try:
                report.orphaned_locks_removed = await self.store.cleanup_orphaned_player_locks()
            except ExternalStoreError as e:
                self.logger.error(f"Orphaned lock cleanup failed: {e}", exc_info=True)
                report.errors.append(f"orphaned lock cleanup: {e.operation}")

        self.logger.info(
            f"Sync {'preview' if dry_run else 'complete'}: {len(report.synced)} synced, "
            f"{len(report.already_present)} already present, {report.player_locks_created} player locks"
        )
        return report
