"""
Services package for the NvD Ladder Bot.

Adapters over the external stores: the ladder sheet, the Redis fast store and
the announcement channel.
"""

from .challenge_store import ChallengeStore
from .ladder import LadderRepository
from .ladder_store import LadderStore, SheetsLadderStore
from .notifier import DiscordChannelNotifier, Notifier

__all__ = [
    'ChallengeStore',
    'LadderRepository',
    'LadderStore',
    'SheetsLadderStore',
    'Notifier',
    'DiscordChannelNotifier',
]
