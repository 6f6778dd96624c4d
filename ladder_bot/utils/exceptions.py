"""
Custom exceptions for the challenge ladder with user-friendly error messages.

Every exception carries a ``user_message`` that command handlers can show
as-is; ``str(exc)`` stays technical for the logs.
"""

from typing import Optional


class LadderError(Exception):
    """Base exception for ladder-related errors."""
    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


class ValidationError(LadderError):
    """A precondition failed; nothing was mutated."""


class InvalidDirectionError(ValidationError):
    """Raised when a player tries to challenge at or below their own rank."""
    def __init__(self, challenger_rank: int, target_rank: int):
        super().__init__(
            f"Rank {challenger_rank} cannot challenge rank {target_rank}",
            "You cannot challenge players ranked below you."
        )
        self.challenger_rank = challenger_rank
        self.target_rank = target_rank


class JumpTooLargeError(ValidationError):
    """Raised when a challenge skips more available players than allowed."""
    def __init__(self, max_allowed_rank: int, user_message: str):
        super().__init__(
            f"Jump too large, highest rank allowed is {max_allowed_rank}",
            user_message
        )
        self.max_allowed_rank = max_allowed_rank


class PermissionDeniedError(ValidationError):
    """Raised when the requester may not act on these players."""


class CooldownActiveError(ValidationError):
    """Raised when two players played each other too recently."""
    def __init__(self, remaining_hours: int):
        super().__init__(
            f"Cooldown active, {remaining_hours}h remaining",
            f"You cannot challenge this player yet. Cooldown remains for {remaining_hours} hours."
        )
        self.remaining_hours = remaining_hours


class PlayerUnavailableError(ValidationError):
    """Raised when a player is not in a state that allows the transition."""


class UnparseableDateError(ValidationError):
    """Raised when a stored challenge timestamp matches no accepted format."""
    def __init__(self, value: str):
        super().__init__(
            f"Unparseable challenge date: {value!r}",
            "The current challenge date format is invalid. Please check the data in the ladder sheet."
        )
        self.value = value


class NotFoundError(LadderError):
    """Raised when a rank, name or identity does not resolve to a ladder row."""


class ConflictError(LadderError):
    """Raised when the requested transition collides with existing state."""


class InvalidPairError(ConflictError):
    """Raised when two players are not mutually paired in a challenge."""
    def __init__(self, rank_a: int, rank_b: int):
        super().__init__(
            f"Ranks {rank_a} and {rank_b} are not paired with each other",
            "The specified players are not currently in a valid challenge with each other."
        )


class LockHeldError(ConflictError):
    """Raised when another operation holds a processing lock for a pair or rank."""
    def __init__(self, lock_key: str, user_message: Optional[str] = None):
        super().__init__(
            f"Processing lock held: {lock_key}",
            user_message or "This challenge is already being processed. Please try again in a moment."
        )
        self.lock_key = lock_key


class IntegrityFault(LadderError):
    """Bidirectional pairing mismatch found in the ladder. Reported, never auto-corrected."""
    def __init__(self, rank: int, opponent_rank: int, detail: str):
        super().__init__(f"Integrity fault at rank {rank} -> {opponent_rank}: {detail}", detail)
        self.rank = rank
        self.opponent_rank = opponent_rank
        self.detail = detail


class ExternalStoreError(LadderError):
    """Raised when a ladder-store or fast-store call fails."""
    def __init__(self, operation: str, details: Optional[str] = None):
        super().__init__(
            f"Store error during {operation}: {details}",
            "Unable to reach the ladder right now. Please try again later."
        )
        self.operation = operation
