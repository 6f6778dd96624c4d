import os

# File logging off for the test run; must be set before ladder_bot.config is imported
os.environ['LOG_DIR'] = ''
os.environ.setdefault('LADDER_TIMEZONE', 'America/New_York')

from datetime import datetime

import pytest
import pytz

from ladder_bot.operations.challenge_operations import ChallengeLifecycleManager
from ladder_bot.operations.expiry_reconciler import ExpiryReconciler
from ladder_bot.services.challenge_store import ChallengeStore
from ladder_bot.services.ladder import LadderRepository
from tests.helpers import (
    LADDER_SHEET, METRICS_SHEET, FakeClock, FakeLadderStore, FakeRedis, RecordingNotifier, ladder_sheet
)

EASTERN = pytz.timezone('America/New_York')


@pytest.fixture
def clock():
    return FakeClock(EASTERN.localize(datetime(2025, 6, 15, 12, 0)))


@pytest.fixture
def redis_client(clock):
    return FakeRedis(clock)


@pytest.fixture
def store(redis_client, clock):
    return ChallengeStore(redis_client, clock=clock.time)


@pytest.fixture
def ladder_store():
    return FakeLadderStore({
        LADDER_SHEET: ladder_sheet(12),
        METRICS_SHEET: [['Name', 'Discord ID', 'Title Defenses']],
    })


@pytest.fixture
def ladder(ladder_store):
    return LadderRepository(ladder_store, sheet_name=LADDER_SHEET, metrics_sheet_name=METRICS_SHEET)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def manager(ladder, store, notifier, clock):
    return ChallengeLifecycleManager(ladder, store, notifier, clock=clock)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def reconciler(ladder, store, notifier, clock, sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    return ExpiryReconciler(ladder, store, notifier, clock=clock, settle_seconds=0, sleep=fake_sleep)
