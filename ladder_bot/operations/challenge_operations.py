"""
Challenge lifecycle operations.

Moves a pair of players through Available -> Challenge -> Available while
keeping the ladder sheet and the fast store in step. The ladder is written
first and is authoritative; fast-store writes that follow are best effort.
Every transition holds the per-pair processing lock and the locks on both ranks.
Registering and removing players live here too, since a removal shifts the
ranks that challenge records are keyed by.
"""

import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ladder_bot.constants import ChallengeTiming, UIConstants
from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.operations.ladder_membership import RemovalPlan, find_registered, new_player_row, plan_removal
from ladder_bot.operations.rank_policy import ensure_challenge_allowed
from ladder_bot.services.challenge_store import ChallengeStore
from ladder_bot.services.ladder import LadderRepository
from ladder_bot.services.notifier import Notifier
from ladder_bot.utils.challenge_dates import (
    add_days_keep_wall_clock, challenge_expiry, format_challenge_date, ladder_now,
    parse_challenge_date, split_timezone_suffix, ttl_from_challenge_date, ttl_until
)
from ladder_bot.utils.embeds import (
    build_challenge_canceled_embed, build_challenge_extended_embed, build_challenge_issued_embed,
    build_challenge_result_embed, build_farewell_embed, build_player_registered_embed, mention
)
from ladder_bot.utils.exceptions import (
    ConflictError, CooldownActiveError, ExternalStoreError, InvalidPairError, LadderError,
    NotFoundError, PermissionDeniedError, PlayerUnavailableError, UnparseableDateError,
    ValidationError
)
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

RANKS_NOT_FOUND = "One or both ranks were not found on the leaderboard."


@dataclass
class OperationResult:
    """Tagged outcome of a lifecycle operation."""
    success: bool
    message: str = ''
    error: Optional[LadderError] = None
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data) -> 'OperationResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def failed(cls, error: LadderError) -> 'OperationResult':
        return cls(success=False, message=error.user_message, error=error)


class ChallengeLifecycleManager:
    """
    Coordinates the ladder sheet and the fast store for every challenge transition.

    Validation failures never mutate anything. Ladder failures abort the
    operation with a retry-later message. Fast-store failures after a
    successful ladder write are logged and the operation still succeeds.
    """

    def __init__(self, ladder: LadderRepository, store: ChallengeStore, notifier: Notifier,
                 clock: Callable = ladder_now):
        """
        Args:
            ladder: Repository over the authoritative ladder sheet
            store: Fast store for challenge, cooldown and lock records
            notifier: Announcement sink for the challenge channel
            clock: Returns the current aware datetime in the ladder time zone
        """
        self.ladder = ladder
        self.store = store
        self.notifier = notifier
        self.clock = clock
        self.logger = setup_logger(f"{__name__}.ChallengeLifecycleManager")

    async def _run(self, operation: str, action: Callable[[], Awaitable[OperationResult]]) -> OperationResult:
        try:
            return await action()
        except ExternalStoreError as e:
            self.logger.error(f"{operation} aborted: {e}", exc_info=True)
            return OperationResult.failed(e)
        except LadderError as e:
            self.logger.info(f"{operation} refused: {e}")
            return OperationResult.failed(e)

    async def _best_effort(self, description: str, awaitable: Awaitable) -> bool:
        """Await a fast-store follow-up; failures are logged, never raised."""
        try:
            await awaitable
            return True
        except ExternalStoreError as e:
            self.logger.error(f"Best-effort step '{description}' failed: {e}", exc_info=True)
            return False

    async def _notify(self, awaitable: Awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            self.logger.error(f"Announcement failed: {e}", exc_info=True)

    def _require_rows(self, players: List[PlayerRow], *ranks: int) -> Tuple[PlayerRow, ...]:
        rows = tuple(self.ladder.find_by_rank(players, rank) for rank in ranks)
        if any(row is None for row in rows):
            raise NotFoundError(f"Ranks {ranks} not all on the ladder", RANKS_NOT_FOUND)
        return rows

    def _resolve_player(self, players: List[PlayerRow], query) -> PlayerRow:
        player = self.ladder.find_by_rank_or_name(players, str(query))
        if player is None:
            raise NotFoundError(f"No ladder row for {query!r}", f"Player '{query}' was not found on the leaderboard.")
        return player

    def _resolve_pair(self, players: List[PlayerRow], player: PlayerRow) -> PlayerRow:
        """Return the mutually paired opponent of ``player`` or raise."""
        if not player.in_challenge or player.opponent_rank is None:
            raise PlayerUnavailableError(
                f"Rank {player.rank} is not in a challenge",
                f"{player.display_name} is not currently in a challenge."
            )
        opponent = self.ladder.find_by_rank(players, player.opponent_rank)
        if opponent is None:
            raise NotFoundError(
                f"Opponent rank {player.opponent_rank} of rank {player.rank} not found",
                f"The opponent of {player.display_name} (rank {player.opponent_rank}) was not found on the leaderboard."
            )
        if not opponent.in_challenge or not player.is_paired_with(opponent):
            raise InvalidPairError(player.rank, opponent.rank)
        return opponent

    # Issue

    async def evaluate_and_issue_challenge(self, challenger_rank: int, target_rank: int,
                                           requester_id, requester_is_privileged: bool = False) -> OperationResult:
        """
        Issue a challenge from ``challenger_rank`` to ``target_rank``.

        Preconditions are checked in order and the first failure is reported:
        rank policy, both rows exist, requester owns the challenger rank (or is
        privileged), no cooldown, no existing challenge, both Available, and
        neither is already the opponent of a third player.

        The pair lock also guards both ranks, so a concurrent challenge that
        shares a player is refused with LockHeldError before it writes anything.
        """
        async def _issue() -> OperationResult:
            # Requests that can never be valid are refused before any lock is taken
            ensure_challenge_allowed(await self.ladder.fetch_players(), challenger_rank, target_rank)

            async with self.store.pair_lock(challenger_rank, target_rank):
                players = await self.ladder.fetch_players()

                ensure_challenge_allowed(players, challenger_rank, target_rank)
                challenger, target = self._require_rows(players, challenger_rank, target_rank)

                if not requester_is_privileged and challenger.discord_id != str(requester_id):
                    raise PermissionDeniedError(
                        f"Requester {requester_id} does not own rank {challenger_rank}",
                        "You can only initiate challenges for your own rank."
                    )

                cooldown = await self.store.check_cooldown(challenger.discord_id, target.discord_id)
                if cooldown.on_cooldown:
                    raise CooldownActiveError(cooldown.remaining_hours)

                if await self.store.challenge_exists(challenger_rank, target_rank):
                    raise ConflictError(
                        f"Challenge record exists for {challenger_rank}/{target_rank}",
                        "A challenge already exists between these players."
                    )

                if not challenger.is_available:
                    raise PlayerUnavailableError(
                        f"Rank {challenger_rank} status is {challenger.status}",
                        "Challenge failed: You are not available for challenges."
                    )
                if not target.is_available:
                    raise PlayerUnavailableError(
                        f"Rank {target_rank} status is {target.status}",
                        "Challenge failed: Your target is not available for challenges."
                    )

                for row, message in (
                    (challenger, "You cannot issue a challenge while you are already being challenged by someone else."),
                    (target, "Target player is already being challenged by someone else."),
                ):
                    other = next(
                        (p for p in players
                         if p.in_challenge and p.opponent_rank == row.rank and p.rank not in (challenger_rank, target_rank)),
                        None
                    )
                    if other is not None:
                        raise ConflictError(f"Rank {row.rank} is the opponent of rank {other.rank}", message)

                now = self.clock()
                timestamp = format_challenge_date(now)
                challenger, target = await self.ladder.mark_challenge(challenger, target, timestamp)

                ttl = ttl_from_challenge_date(timestamp, now)
                challenge_key = None
                try:
                    challenge_key = await self.store.set_challenge(challenger.to_ref(), target.to_ref(), timestamp, ttl)
                except ExternalStoreError as e:
                    self.logger.error(f"Could not record challenge in fast store: {e}", exc_info=True)
                if challenge_key:
                    for row in (challenger, target):
                        await self._best_effort(
                            f"player lock {row.discord_id}",
                            self.store.set_player_lock(row.discord_id, challenge_key, ttl)
                        )

            self.logger.info(f"Challenge issued: #{challenger_rank} -> #{target_rank} at {timestamp}")
            await self._notify(self.notifier.announce_embed(build_challenge_issued_embed(challenger, target)))
            await self._notify(self.notifier.announce(
                f"{mention(target.discord_id, target.display_name)}, you have been challenged by "
                f"**{challenger.display_name}** (Rank #{challenger.rank})!"
            ))

            return OperationResult.ok(
                f"Challenge issued: Rank #{challenger_rank} vs Rank #{target_rank}.",
                challenger=challenger,
                target=target,
                challenge_key=challenge_key,
                timestamp=timestamp
            )

        return await self._run('Issue challenge', _issue)

    # Extend

    async def extend_challenge(self, player_rank_or_name, requester_is_privileged: bool = False) -> OperationResult:
        """Push a challenge's date 2 days forward and refresh its fast-store records."""
        async def _extend() -> OperationResult:
            if not requester_is_privileged:
                raise PermissionDeniedError("Extend requires admin", "Only admins can extend challenges.")

            players = await self.ladder.fetch_players()
            player = self._resolve_player(players, player_rank_or_name)
            opponent = self._resolve_pair(players, player)

            locked_opponent = opponent.rank
            async with self.store.pair_lock(player.rank, locked_opponent):
                players = await self.ladder.fetch_players()
                player, = self._require_rows(players, player.rank)
                opponent = self._resolve_pair(players, player)
                if opponent.rank != locked_opponent:
                    raise ConflictError(
                        f"Rank {player.rank} re-paired while waiting for the lock",
                        "This challenge changed while it was being extended. Please check the ladder and try again."
                    )

                now = self.clock()
                current = player.challenge_timestamp
                start = parse_challenge_date(current, now)
                if start is None:
                    raise UnparseableDateError(current)

                _, suffix = split_timezone_suffix(current)
                new_start = add_days_keep_wall_clock(start, ChallengeTiming.EXTENSION_DAYS)
                new_timestamp = format_challenge_date(new_start, suffix)

                await self.ladder.set_challenge_date([player, opponent], new_timestamp)
                player = replace(player, challenge_timestamp=new_timestamp)
                opponent = replace(opponent, challenge_timestamp=new_timestamp)

                ttl = ttl_until(challenge_expiry(new_start), now)
                await self._best_effort('remove old challenge', self.store.remove_challenge(player.rank, opponent.rank))
                challenge_key = None
                try:
                    challenge_key = await self.store.set_challenge(player.to_ref(), opponent.to_ref(), new_timestamp, ttl)
                except ExternalStoreError as e:
                    self.logger.error(f"Could not store extended challenge: {e}", exc_info=True)
                if challenge_key:
                    for row in (player, opponent):
                        await self._best_effort(
                            f"player lock {row.discord_id}",
                            self.store.set_player_lock(row.discord_id, challenge_key, ttl)
                        )

            self.logger.info(f"Challenge #{player.rank} vs #{opponent.rank} extended: {current} -> {new_timestamp}")
            await self._notify(self.notifier.announce_embed(
                build_challenge_extended_embed(player, opponent, new_timestamp)
            ))
            return OperationResult.ok(
                f"Challenge between Rank #{player.rank} and Rank #{opponent.rank} extended to {new_timestamp}.",
                player=player,
                opponent=opponent,
                previous_timestamp=current,
                new_timestamp=new_timestamp,
                ttl=ttl
            )

        return await self._run('Extend challenge', _extend)

    # Cancel

    async def cancel_challenge(self, player_rank_or_name, requester_is_privileged: bool = False) -> OperationResult:
        """
        Reset a challenge pair to Available.

        The opponent row is only cleared while it still points back at the
        player, so a half-written pair can be repaired without touching an
        unrelated challenge.
        """
        async def _cancel() -> OperationResult:
            if not requester_is_privileged:
                raise PermissionDeniedError("Cancel requires admin", "Only admins can cancel challenges.")

            players = await self.ladder.fetch_players()
            player = self._resolve_player(players, player_rank_or_name)
            if not player.in_challenge or player.opponent_rank is None:
                raise PlayerUnavailableError(
                    f"Rank {player.rank} is not in a challenge",
                    f"{player.display_name} is not currently in a challenge."
                )
            opponent_rank = player.opponent_rank

            async with self.store.pair_lock(player.rank, opponent_rank):
                players = await self.ladder.fetch_players()
                player, = self._require_rows(players, player.rank)
                if not player.in_challenge or player.opponent_rank != opponent_rank:
                    raise ConflictError(
                        f"Rank {player.rank} changed while waiting for the lock",
                        "This challenge changed while it was being canceled. Please check the ladder and try again."
                    )
                opponent = self.ladder.find_by_rank(players, opponent_rank)
                to_clear = [player]
                if opponent is not None and opponent.in_challenge and opponent.opponent_rank == player.rank:
                    to_clear.append(opponent)
                else:
                    self.logger.warning(
                        f"Canceling rank {player.rank}: opponent rank {opponent_rank} does not point back, "
                        f"clearing one row only"
                    )

                cleared = await self.ladder.clear_challenges(to_clear)

                await self._best_effort('remove challenge', self.store.remove_challenge(player.rank, opponent_rank))
                for row in to_clear:
                    await self._best_effort(f"remove player lock {row.discord_id}", self.store.remove_player_lock(row.discord_id))

            self.logger.info(f"Challenge canceled for ranks {[row.rank for row in cleared]}")
            if opponent is not None:
                await self._notify(self.notifier.announce_embed(build_challenge_canceled_embed(player, opponent)))
            return OperationResult.ok(
                f"Challenge involving Rank #{player.rank} and Rank #{opponent_rank} has been canceled.",
                cleared=cleared
            )

        return await self._run('Cancel challenge', _cancel)

    # Complete

    async def report_result(self, winner_rank: int, loser_rank: int, requester_id,
                            requester_is_privileged: bool = False) -> OperationResult:
        """
        Record the result of a challenge.

        A climb victory (winner ranked numerically lower on the ladder) swaps
        the two rows except for the rank number; a defense keeps both ranks.
        Both players end up Available with a 24h cooldown between them.
        """
        async def _report() -> OperationResult:
            if winner_rank == loser_rank:
                raise ValidationError(
                    f"Winner and loser are both rank {winner_rank}",
                    "Winner and loser must be different players."
                )

            async with self.store.pair_lock(winner_rank, loser_rank):
                players = await self.ladder.fetch_players()
                winner, loser = self._require_rows(players, winner_rank, loser_rank)

                if not requester_is_privileged and str(requester_id) not in (winner.discord_id, loser.discord_id):
                    raise PermissionDeniedError(
                        f"Requester {requester_id} is not part of #{winner_rank} vs #{loser_rank}",
                        "You can only report results for challenges you are part of."
                    )

                if not winner.in_challenge or not loser.in_challenge:
                    raise PlayerUnavailableError(
                        f"Ranks {winner_rank}/{loser_rank} not both in Challenge",
                        "Both players must be in a challenge to report a result."
                    )
                if not winner.is_paired_with(loser):
                    raise InvalidPairError(winner_rank, loser_rank)

                is_defense = winner_rank < loser_rank
                if is_defense:
                    new_winner, new_loser = winner.cleared(), loser.cleared()
                else:
                    # Identity moves, rank number and sheet slot stay
                    new_winner = replace(winner, rank=loser.rank, sheet_row=loser.sheet_row).cleared()
                    new_loser = replace(loser, rank=winner.rank, sheet_row=winner.sheet_row).cleared()

                await self.ladder.write_rows([new_winner, new_loser])

                title_defenses = None
                if is_defense and winner_rank == 1:
                    try:
                        title_defenses = await self.ladder.record_title_defense(winner)
                    except ExternalStoreError as e:
                        self.logger.error(f"Could not record title defense for {winner.display_name}: {e}", exc_info=True)

                await self._best_effort('set cooldown', self.store.set_cooldown(new_winner.to_ref(), new_loser.to_ref()))
                await self._best_effort('remove challenge', self.store.remove_challenge(winner_rank, loser_rank))
                for row in (winner, loser):
                    await self._best_effort(f"remove player lock {row.discord_id}", self.store.remove_player_lock(row.discord_id))

            outcome = 'defended' if is_defense else 'climbed'
            self.logger.info(f"Result: #{winner_rank} {winner.display_name} {outcome} against #{loser_rank} {loser.display_name}")
            await self._notify(self.notifier.announce_embed(build_challenge_result_embed(winner, loser, is_defense)))

            return OperationResult.ok(
                f"Result recorded: {winner.display_name} {outcome} against {loser.display_name}.",
                winner=new_winner,
                loser=new_loser,
                is_defense=is_defense,
                title_defenses=title_defenses
            )

        return await self._run('Report result', _report)

    # Membership

    async def register_player(self, display_name: str, discord_id, notes: str = '',
                              requester_is_privileged: bool = False) -> OperationResult:
        """Add a player at the bottom of the ladder, one rank below the current last player."""
        async def _register() -> OperationResult:
            if not requester_is_privileged:
                raise PermissionDeniedError("Register requires admin", "Only admins can register players.")
            if not (display_name or '').strip() or not discord_id:
                raise ValidationError("Register needs a name and a Discord id", "Could not find the specified Discord user.")

            def _check_new(players: List[PlayerRow]) -> None:
                existing = find_registered(players, display_name, str(discord_id))
                if existing is not None:
                    raise ConflictError(
                        f"{display_name} ({discord_id}) already holds rank {existing.rank}",
                        "This Discord user already has a character on the NvD ladder."
                    )

            players = await self.ladder.fetch_players()
            _check_new(players)
            planned = new_player_row(players, display_name, str(discord_id), notes)

            async with self.store.rank_lock([planned.rank]):
                players = await self.ladder.fetch_players()
                _check_new(players)
                player = new_player_row(players, display_name, str(discord_id), notes)
                if player.rank != planned.rank:
                    raise ConflictError(
                        f"Ladder grew to rank {player.rank - 1} while waiting for the lock",
                        "The ladder changed while this player was being registered. Please try again."
                    )
                await self.ladder.append_player(player)

            self.logger.info(f"Registered {player.display_name} ({player.discord_id}) at rank #{player.rank}")
            await self._notify(self.notifier.announce_embed(build_player_registered_embed(player)))
            return OperationResult.ok(f"{player.display_name} registered at rank #{player.rank}.", player=player)

        return await self._run('Register player', _register)

    async def remove_player(self, rank: int, requester_is_privileged: bool = False) -> OperationResult:
        """
        Move a player to the extended vacation sheet and close the gap.

        Every player below moves up one rank. A challenge with the removed
        player is dropped, challenges spanning the removed rank keep pointing
        at the same players, and fast-store records are re-keyed to the new
        ranks. All ranks from the removed one down are guarded while this runs.
        """
        async def _remove() -> OperationResult:
            if not requester_is_privileged:
                raise PermissionDeniedError("Remove requires admin", "Only admins can remove players.")

            def _plan(players: List[PlayerRow]) -> RemovalPlan:
                plan = plan_removal(players, rank)
                if plan is None:
                    raise NotFoundError(f"Rank {rank} not on the ladder", "Rank not found in the ladder.")
                return plan

            players = await self.ladder.fetch_players()
            plan = _plan(players)
            last_rank = max(p.rank for p in players)
            guarded = set(range(rank, last_rank + 2))
            if plan.freed_opponent is not None:
                guarded.add(plan.freed_opponent.rank)

            async with self.store.rank_lock(guarded):
                players = await self.ladder.fetch_players()
                plan = _plan(players)
                if max(p.rank for p in players) != last_rank or (
                        plan.freed_opponent is not None and plan.freed_opponent.rank not in guarded):
                    raise ConflictError(
                        f"Ladder changed around rank {rank} while waiting for the lock",
                        "The ladder changed while this player was being removed. Please try again."
                    )

                removed = plan.removed
                await self.ladder.archive_player(removed)
                await self.ladder.write_rows(plan.updated_rows, blank_sheet_rows=[plan.vacated_sheet_row])

                if removed.in_challenge and removed.opponent_rank is not None:
                    await self._best_effort(
                        'remove challenge', self.store.remove_challenge(rank, removed.opponent_rank)
                    )
                for row in (removed, plan.freed_opponent):
                    if row is not None:
                        await self._best_effort(
                            f"remove player lock {row.discord_id}", self.store.remove_player_lock(row.discord_id)
                        )

                moved = []
                try:
                    moved = await self.store.shift_challenge_keys(rank)
                except ExternalStoreError as e:
                    self.logger.error(f"Could not re-key challenges after removing rank {rank}: {e}", exc_info=True)

            ranks_updated = last_rank - rank
            self.logger.info(
                f"Removed #{rank} {removed.display_name}: {ranks_updated} ranks shifted, "
                f"{len(moved)} fast-store challenges re-keyed"
            )
            await self._notify(self.notifier.announce_embed(
                build_farewell_embed(removed, random.choice(UIConstants.FAREWELL_MESSAGES), ranks_updated)
            ))
            return OperationResult.ok(
                f"Successfully moved {removed.display_name} to Extended Vacation and updated all affected "
                f"rankings and challenges.",
                removed=removed,
                updated_rows=plan.updated_rows,
                freed_opponent=plan.freed_opponent,
                moved_challenges=moved
            )

        return await self._run('Remove player', _remove)
