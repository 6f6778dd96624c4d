"""
Fast-store records for in-flight challenges.

Key derivation and (de)serialization for challenge, warning, cooldown and
player-lock records, the short-lived processing, rank and warning locks, and
the re-keying of records when a removal shifts ranks. The Redis client is
injected so tests can substitute an in-memory double.
"""

import json
import math
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from typing import AsyncIterator, List, Optional, Tuple

from redis.exceptions import RedisError

from ladder_bot.constants import ChallengeTiming, KeyPrefixes
from ladder_bot.data_models.ladder import ChallengeRecord, CooldownRecord, PlayerRef
from ladder_bot.utils.challenge_dates import warning_ttl
from ladder_bot.utils.exceptions import ExternalStoreError, LockHeldError
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

PLAYER_BUSY = "One of these players is part of another request right now. Please try again in a moment."


def _sorted_pair(a, b) -> Tuple[str, str]:
    first, second = sorted([str(a), str(b)])
    return first, second


def _pair_key(prefix: str, a, b) -> str:
    first, second = _sorted_pair(a, b)
    return f"{prefix}{first}:{second}"


def challenge_key(rank_a: int, rank_b: int) -> str:
    return _pair_key(KeyPrefixes.CHALLENGE, rank_a, rank_b)


def warning_key(rank_a: int, rank_b: int) -> str:
    return _pair_key(KeyPrefixes.WARNING, rank_a, rank_b)


def cooldown_key(discord_id_a: str, discord_id_b: str) -> str:
    return _pair_key(KeyPrefixes.COOLDOWN, discord_id_a, discord_id_b)


def processing_lock_key(rank_a: int, rank_b: int) -> str:
    return _pair_key(KeyPrefixes.PROCESSING_LOCK, rank_a, rank_b)


def warning_lock_key(rank_a: int, rank_b: int) -> str:
    return _pair_key(KeyPrefixes.WARNING_LOCK, rank_a, rank_b)


def player_lock_key(discord_id: str) -> str:
    return f"{KeyPrefixes.PLAYER_LOCK}{discord_id}"


def rank_lock_key(rank: int) -> str:
    return f"{KeyPrefixes.RANK_LOCK}{rank}"


def parse_pair_key(key: str, prefix: str) -> Optional[Tuple[int, int]]:
    """Recover the rank pair from a pair key, or None if the key is not of that kind."""
    if not key.startswith(prefix):
        return None
    parts = key[len(prefix):].split(':')
    if len(parts) != 2:
        return None
    try:
        return int(parts[0]), int(parts[1])
    except ValueError:
        return None


@dataclass(frozen=True)
class CooldownStatus:
    on_cooldown: bool
    remaining_seconds: int = 0
    record: Optional[CooldownRecord] = None

    @property
    def remaining_hours(self) -> int:
        return math.ceil(self.remaining_seconds / 3600)


@dataclass(frozen=True)
class ActiveChallenge:
    key: str
    record: ChallengeRecord
    remaining_seconds: int


@dataclass(frozen=True)
class PlayerLock:
    discord_id: str
    challenge_key: str
    remaining_seconds: int
    timestamp: int


class ChallengeStore:
    """
    Redis-backed store for challenge lifecycle records.

    All records expire on their own; the ladder sheet stays authoritative and
    every record here can be rebuilt from it.
    """

    def __init__(self, client, clock=time.time):
        """
        Args:
            client: ``redis.asyncio.Redis`` created with ``decode_responses=True``
            clock: Callable returning epoch seconds, used for record timestamps
        """
        self.client = client
        self.clock = clock
        self.logger = logger

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    async def _call(self, operation: str, awaitable):
        try:
            return await awaitable
        except RedisError as e:
            raise ExternalStoreError(operation, str(e)) from e

    async def _keys(self, prefix: str) -> List[str]:
        try:
            return [key async for key in self.client.scan_iter(match=f"{prefix}*")]
        except RedisError as e:
            raise ExternalStoreError(f"scan {prefix}", str(e)) from e

    # Challenges

    async def set_challenge(self, player1: PlayerRef, player2: PlayerRef, challenge_date: str, ttl: int) -> str:
        """Store the challenge record and its warning record; returns the challenge key."""
        key = challenge_key(player1.rank, player2.rank)
        now_ms = self._now_ms()
        record = ChallengeRecord(
            player1=player1,
            player2=player2,
            challenge_date=challenge_date,
            start_time=now_ms,
            expiry_time=now_ms + ttl * 1000
        )
        await self._call('set challenge', self.client.set(key, record.to_json(), ex=ttl))

        warn_key = warning_key(player1.rank, player2.rank)
        warn_ttl = warning_ttl(ttl)
        await self._call('set warning', self.client.set(warn_key, key, ex=warn_ttl))

        self.logger.info(f"Set challenge {key} (ttl {ttl}s) and warning {warn_key} (ttl {warn_ttl}s)")
        return key

    async def get_challenge(self, rank_a: int, rank_b: int) -> Optional[ChallengeRecord]:
        raw = await self._call('get challenge', self.client.get(challenge_key(rank_a, rank_b)))
        return ChallengeRecord.from_json(raw) if raw else None

    async def challenge_ttl(self, rank_a: int, rank_b: int) -> int:
        """Remaining seconds, or a negative value if the challenge is missing."""
        return await self._call('ttl challenge', self.client.ttl(challenge_key(rank_a, rank_b)))

    async def challenge_exists(self, rank_a: int, rank_b: int) -> bool:
        return bool(await self._call('exists challenge', self.client.exists(challenge_key(rank_a, rank_b))))

    async def remove_challenge(self, rank_a: int, rank_b: int) -> None:
        key = challenge_key(rank_a, rank_b)
        warn_key = warning_key(rank_a, rank_b)
        await self._call('remove challenge', self.client.delete(key, warn_key))
        self.logger.info(f"Removed challenge keys: {key}, {warn_key}")

    async def list_challenges(self) -> List[ActiveChallenge]:
        challenges = []
        for key in await self._keys(KeyPrefixes.CHALLENGE):
            raw = await self._call('get challenge', self.client.get(key))
            if not raw:
                continue
            ttl = await self._call('ttl challenge', self.client.ttl(key))
            challenges.append(ActiveChallenge(key=key, record=ChallengeRecord.from_json(raw), remaining_seconds=ttl))
        return challenges

    # Cooldowns

    async def set_cooldown(self, player1: PlayerRef, player2: PlayerRef) -> str:
        key = cooldown_key(player1.discord_id, player2.discord_id)
        now_ms = self._now_ms()
        record = CooldownRecord(
            player1=player1,
            player2=player2,
            start_time=now_ms,
            expiry_time=now_ms + ChallengeTiming.COOLDOWN_TTL * 1000
        )
        await self._call('set cooldown', self.client.set(key, record.to_json(), ex=ChallengeTiming.COOLDOWN_TTL))
        self.logger.info(f"Set cooldown {key} with expiry {ChallengeTiming.COOLDOWN_TTL}s")
        return key

    async def check_cooldown(self, discord_id_a: str, discord_id_b: str) -> CooldownStatus:
        key = cooldown_key(discord_id_a, discord_id_b)
        raw = await self._call('get cooldown', self.client.get(key))
        if not raw:
            return CooldownStatus(on_cooldown=False)
        ttl = await self._call('ttl cooldown', self.client.ttl(key))
        return CooldownStatus(
            on_cooldown=True,
            remaining_seconds=max(ttl, 0),
            record=CooldownRecord.from_json(raw)
        )

    async def remove_cooldown(self, discord_id_a: str, discord_id_b: str) -> None:
        await self._call('remove cooldown', self.client.delete(cooldown_key(discord_id_a, discord_id_b)))

    async def list_cooldowns(self) -> List[CooldownStatus]:
        cooldowns = []
        for key in await self._keys(KeyPrefixes.COOLDOWN):
            raw = await self._call('get cooldown', self.client.get(key))
            if not raw:
                continue
            ttl = await self._call('ttl cooldown', self.client.ttl(key))
            cooldowns.append(CooldownStatus(True, max(ttl, 0), CooldownRecord.from_json(raw)))
        return cooldowns

    async def get_player_cooldowns(self, discord_id: str) -> List[CooldownStatus]:
        return [
            status for status in await self.list_cooldowns()
            if discord_id in (status.record.player1.discord_id, status.record.player2.discord_id)
        ]

    # Player locks

    async def set_player_lock(self, discord_id: str, key: str, ttl: int) -> None:
        if not discord_id:
            return
        raw = json.dumps({'challenge_key': key, 'timestamp': self._now_ms()})
        await self._call('set player lock', self.client.set(player_lock_key(discord_id), raw, ex=ttl))

    async def remove_player_lock(self, discord_id: str) -> None:
        if not discord_id:
            return
        await self._call('remove player lock', self.client.delete(player_lock_key(discord_id)))

    async def check_player_lock(self, discord_id: str) -> Optional[PlayerLock]:
        key = player_lock_key(discord_id)
        raw = await self._call('get player lock', self.client.get(key))
        if not raw:
            return None
        ttl = await self._call('ttl player lock', self.client.ttl(key))
        return self._parse_player_lock(discord_id, raw, ttl)

    @staticmethod
    def _parse_player_lock(discord_id: str, raw: str, ttl: int) -> PlayerLock:
        data = json.loads(raw)
        return PlayerLock(discord_id, data.get('challenge_key', ''), ttl, int(data.get('timestamp', 0)))

    async def list_player_locks(self) -> List[PlayerLock]:
        locks = []
        for key in await self._keys(KeyPrefixes.PLAYER_LOCK):
            raw = await self._call('get player lock', self.client.get(key))
            if not raw:
                continue
            ttl = await self._call('ttl player lock', self.client.ttl(key))
            locks.append(self._parse_player_lock(key[len(KeyPrefixes.PLAYER_LOCK):], raw, ttl))
        return locks

    async def cleanup_orphaned_player_locks(self) -> int:
        """Remove player locks whose challenge record no longer exists."""
        active = set(await self._keys(KeyPrefixes.CHALLENGE))
        cleaned = 0
        for lock in await self.list_player_locks():
            if lock.challenge_key not in active:
                await self.remove_player_lock(lock.discord_id)
                cleaned += 1
                self.logger.info(f"Cleaned orphaned lock for player {lock.discord_id}")
        return cleaned

    # Rank shifts

    async def shift_challenge_keys(self, removed_rank: int) -> List[Tuple[Tuple[int, int], Tuple[int, int]]]:
        """
        Re-key challenge and warning records after ``removed_rank`` left the ladder.

        Every rank below the removed one moves up by one. Records keep their
        remaining TTL and the player locks are pointed at the new keys.
        Records involving the removed rank itself must be removed beforehand.

        Returns:
            ``(old_pair, new_pair)`` for every record that moved
        """
        def shifted(rank: int) -> int:
            return rank - 1 if rank > removed_rank else rank

        def shifted_ref(ref: PlayerRef) -> PlayerRef:
            return ref if ref.rank is None else replace(ref, rank=shifted(ref.rank))

        pairs = []
        for key in await self._keys(KeyPrefixes.CHALLENGE):
            pair = parse_pair_key(key, KeyPrefixes.CHALLENGE)
            if pair is None or removed_rank in pair:
                continue
            if shifted(pair[0]) != pair[0] or shifted(pair[1]) != pair[1]:
                pairs.append(pair)

        # Lowest ranks first so a new key never lands on one not yet moved
        moved = []
        for old_pair in sorted(pairs, key=min):
            new_pair = (shifted(old_pair[0]), shifted(old_pair[1]))
            old_key = challenge_key(*old_pair)
            raw = await self._call('get challenge', self.client.get(old_key))
            ttl = await self._call('ttl challenge', self.client.ttl(old_key))
            if not raw or ttl <= 0:
                continue

            record = ChallengeRecord.from_json(raw)
            record = replace(record, player1=shifted_ref(record.player1), player2=shifted_ref(record.player2))
            new_key = challenge_key(*new_pair)
            await self._call('move challenge', self.client.set(new_key, record.to_json(), ex=ttl))

            old_warn_key = warning_key(*old_pair)
            warn_ttl = await self._call('ttl warning', self.client.ttl(old_warn_key))
            if warn_ttl > 0:
                await self._call('move warning', self.client.set(warning_key(*new_pair), new_key, ex=warn_ttl))
            await self._call('remove moved challenge', self.client.delete(old_key, old_warn_key))

            for ref in (record.player1, record.player2):
                await self.set_player_lock(ref.discord_id, new_key, ttl)

            self.logger.info(f"Moved challenge {old_key} -> {new_key} (ttl {ttl}s)")
            moved.append((old_pair, new_pair))
        return moved

    # Locks

    @asynccontextmanager
    async def _hold(self, keys: List[str], user_message: Optional[str] = None) -> AsyncIterator[List[str]]:
        """
        Take every key with SET NX EX or none of them.

        Keys already taken are released, token-checked, if a later one is held
        elsewhere; everything taken is released when the block exits.
        """
        token = uuid.uuid4().hex
        held = []
        try:
            for key in keys:
                acquired = await self._call(
                    'acquire processing lock',
                    self.client.set(key, token, ex=ChallengeTiming.PROCESSING_LOCK_TTL, nx=True)
                )
                if not acquired:
                    self.logger.info(f"Processing lock {key} already held")
                    if user_message is None and key.startswith(KeyPrefixes.RANK_LOCK):
                        raise LockHeldError(key, PLAYER_BUSY)
                    raise LockHeldError(key, user_message)
                held.append(key)
            yield held
        finally:
            for key in reversed(held):
                try:
                    if await self.client.get(key) == token:
                        await self.client.delete(key)
                except RedisError as e:
                    self.logger.error(f"Failed to release processing lock {key}: {e}", exc_info=True)

    @asynccontextmanager
    async def pair_lock(self, rank_a: int, rank_b: int) -> AsyncIterator[str]:
        """
        Hold the processing lock for an unordered rank pair.

        Both ranks are guarded as well, so two pairs sharing a player can never
        be processed at the same time. Non-blocking: raises LockHeldError
        immediately if another operation holds any of the locks. The locks
        expire on their own if the holder dies.
        """
        key = processing_lock_key(rank_a, rank_b)
        keys = [key] + [rank_lock_key(rank) for rank in sorted({rank_a, rank_b})]
        async with self._hold(keys):
            yield key

    @asynccontextmanager
    async def rank_lock(self, ranks) -> AsyncIterator[List[str]]:
        """Guard a set of ranks, for operations that rewrite many rows at once."""
        keys = [rank_lock_key(rank) for rank in sorted(set(ranks))]
        async with self._hold(keys, "The ladder is being updated. Please try again in a moment.") as held:
            yield held

    async def acquire_warning_lock(self, rank_a: int, rank_b: int) -> bool:
        """Create-if-absent guard so a warning is only sent once per delivery window."""
        acquired = await self._call(
            'acquire warning lock',
            self.client.set(warning_lock_key(rank_a, rank_b), '1', ex=ChallengeTiming.WARNING_LOCK_TTL, nx=True)
        )
        return bool(acquired)
