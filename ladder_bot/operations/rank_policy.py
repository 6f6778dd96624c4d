"""
Challenge eligibility rules.

Pure functions over a ladder snapshot: no I/O, no clock. Players on vacation
between the two ranks are skipped and do not count toward the jump size.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ladder_bot.constants import LadderConstants
from ladder_bot.data_models.ladder import PlayerRow
from ladder_bot.utils.exceptions import InvalidDirectionError, JumpTooLargeError

INVALID_DIRECTION = 'InvalidDirection'
JUMP_TOO_LARGE = 'JumpTooLarge'


@dataclass(frozen=True)
class ChallengeEvaluation:
    """Outcome of a rank policy check."""
    allowed: bool
    jump_size: int = 0
    max_jump: int = 0
    reason: Optional[str] = None
    max_allowed_rank: Optional[int] = None
    skipped_ranks: List[int] = field(default_factory=list)
    message: Optional[str] = None


def max_jump_for(challenger_rank: int, target_rank: int) -> int:
    """Jump limit for a pairing; the top tier is held to the stricter limit."""
    if target_rank <= LadderConstants.TOP_TIER_THRESHOLD:
        return LadderConstants.TOP_TIER_MAX_JUMP
    if challenger_rank <= LadderConstants.TOP_TIER_THRESHOLD:
        return LadderConstants.TOP_TIER_MAX_JUMP
    return LadderConstants.REGULAR_MAX_JUMP


def evaluate_challenge(players: Iterable[PlayerRow], challenger_rank: int, target_rank: int) -> ChallengeEvaluation:
    """
    Decide whether ``challenger_rank`` may challenge ``target_rank``.

    Args:
        players: Full ladder snapshot
        challenger_rank: Rank of the player issuing the challenge
        target_rank: Rank being challenged (must be numerically lower)

    Returns:
        ChallengeEvaluation; ``reason`` is ``InvalidDirection`` or
        ``JumpTooLarge`` when the challenge is refused
    """
    if challenger_rank <= target_rank:
        return ChallengeEvaluation(
            allowed=False,
            reason=INVALID_DIRECTION,
            message="You cannot challenge players ranked below you."
        )

    between = [p for p in players if target_rank < p.rank < challenger_rank]
    available_between = sorted(p.rank for p in between if not p.on_vacation)
    jump_size = len(available_between) + 1
    limit = max_jump_for(challenger_rank, target_rank)

    if jump_size <= limit:
        return ChallengeEvaluation(
            allowed=True,
            jump_size=jump_size,
            max_jump=limit,
            skipped_ranks=available_between
        )

    max_allowed_rank = challenger_rank - limit
    threshold = LadderConstants.TOP_TIER_THRESHOLD
    if target_rank <= threshold and challenger_rank > threshold:
        message = (
            f"Players outside top {threshold} can only challenge up to {limit} ranks ahead "
            f"when targeting top {threshold} players. The highest rank you can challenge is {max_allowed_rank}."
        )
    elif challenger_rank <= threshold:
        message = (
            f"Top {threshold} players can only challenge up to {limit} ranks ahead. "
            f"The highest rank you can challenge is {max_allowed_rank}."
        )
    else:
        skipped = ', '.join(str(rank) for rank in available_between)
        message = (
            f"Players outside top {threshold} can only challenge up to {limit} ranks ahead "
            f"(excluding players on vacation). You're trying to skip ranks: {skipped}"
        )

    return ChallengeEvaluation(
        allowed=False,
        jump_size=jump_size,
        max_jump=limit,
        reason=JUMP_TOO_LARGE,
        max_allowed_rank=max_allowed_rank,
        skipped_ranks=available_between,
        message=message
    )


def ensure_challenge_allowed(players: Iterable[PlayerRow], challenger_rank: int, target_rank: int) -> ChallengeEvaluation:
    """Like ``evaluate_challenge`` but raises the matching ValidationError on refusal."""
    evaluation = evaluate_challenge(players, challenger_rank, target_rank)
    if evaluation.reason == INVALID_DIRECTION:
        raise InvalidDirectionError(challenger_rank, target_rank)
    if evaluation.reason == JUMP_TOO_LARGE:
        raise JumpTooLargeError(evaluation.max_allowed_rank, evaluation.message)
    return evaluation
