"""
Bot-wide constants for the NvD Ladder Bot.

This module contains the ladder rules, record lifetimes and key namespaces
used throughout the codebase.
"""

class LadderConstants:
    """Constants for challenge eligibility rules."""

    # Ranks at or above this number form the top tier
    TOP_TIER_THRESHOLD = 10

    # Maximum jump size (non-vacation players skipped + 1)
    TOP_TIER_MAX_JUMP = 2
    REGULAR_MAX_JUMP = 3

    # Status values stored in the ladder sheet
    STATUS_AVAILABLE = 'Available'
    STATUS_CHALLENGE = 'Challenge'
    STATUS_VACATION = 'Vacation'

class ChallengeTiming:
    """Lifetimes for challenges and the fast-store records around them (seconds)."""

    CHALLENGE_DAYS = 3
    EXTENSION_DAYS = 2
    CHALLENGE_TTL = 60 * 60 * 24 * CHALLENGE_DAYS
    WARNING_LEAD = 60 * 60 * 24          # Warning fires with 24 hours left
    MIN_TTL = 300                        # Never store a record for less than 5 minutes
    COOLDOWN_TTL = 60 * 60 * 24
    WARNING_LOCK_TTL = 60
    PROCESSING_LOCK_TTL = 30

    # A parsed date this far in the future is read as last year's date
    FUTURE_DATE_GRACE_DAYS = 7

class KeyPrefixes:
    """Fast-store key namespaces."""

    CHALLENGE = 'nvd:challenge:'
    WARNING = 'nvd:warning:'
    COOLDOWN = 'nvd:cooldown:'
    PLAYER_LOCK = 'nvd:lock:player:'
    PROCESSING_LOCK = 'nvd:lock:processing:'
    RANK_LOCK = 'nvd:lock:rank:'
    WARNING_LOCK = 'nvd:lock:warning:'

class SheetColumns:
    """Zero-based column positions in the ladder sheet (A..H)."""

    RANK = 0
    DISPLAY_NAME = 1
    STATUS = 2
    CHALLENGE_DATE = 3
    OPPONENT_RANK = 4
    DISCORD_ID = 5
    NOTES = 6
    COOLDOWN_NOTE = 7

    COLUMN_COUNT = 8
    FIRST_DATA_ROW = 2  # Row 1 holds headers
    DATA_RANGE = 'A2:H'
    METRICS_RANGE = 'A1:C'

class UIConstants:
    """Constants for Discord UI elements."""

    # Embed colors
    LADDER_COLOR = 0x8A2BE2        # NvD purple
    ERROR_COLOR = 0xe74c3c
    SUCCESS_COLOR = 0x2ecc71
    WARNING_COLOR = 0xFF6600

    CHALLENGER_EMOJI = ":bone:"
    CHALLENGED_EMOJI = ":bear:"

    # Discord embed field value limit
    FIELD_LIMIT = 1024

    FAREWELL_MESSAGES = [
        "May your adventures continue beyond the ladder! 🌟",
        "Your legacy in the ladder will be remembered! ⚔️",
        "Until we meet again, brave warrior! 👋",
        "The ladder will miss your presence! 🎭",
        "Your chapter in our story may end, but your legend lives on! 📖",
        "Farewell, noble challenger! 🏰",
        "May your future battles be glorious! ⚔️",
        "Your name shall echo in the halls of the ladder! 🏛️",
    ]
