"""Test doubles for the fast store, the ladder sheet and the notifier."""

import asyncio
import fnmatch
import math
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from redis.exceptions import ConnectionError as RedisConnectionError

from ladder_bot.constants import SheetColumns
from ladder_bot.services.ladder_store import LadderStore, a1_to_grid_range
from ladder_bot.services.notifier import Notifier
from ladder_bot.utils.exceptions import ExternalStoreError

LADDER_SHEET = 'NvD Ladder'
METRICS_SHEET = 'Metrics'
HEADER = ['Rank', 'Name', 'Status', 'cDate', 'Opp#', 'Discord ID', 'Notes', 'Cooldown']


class FakeClock:
    """Controllable ladder clock; call it for a datetime, ``time()`` for epoch seconds."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def time(self) -> float:
        return self.now.timestamp()

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeRedis:
    """In-memory subset of ``redis.asyncio.Redis`` with TTLs driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.data: Dict[str, tuple] = {}
        self.config = {'notify-keyspace-events': ''}
        self.fail_prefixes: List[str] = []

    def _check(self, *keys):
        for key in keys:
            if any(key.startswith(prefix) for prefix in self.fail_prefixes):
                raise RedisConnectionError(f"connection lost while touching {key}")

    def _alive(self, key) -> bool:
        entry = self.data.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= self.clock.time():
            del self.data[key]
            return False
        return True

    async def set(self, key, value, ex=None, nx=False):
        self._check(key)
        if nx and self._alive(key):
            return None
        expires_at = self.clock.time() + ex if ex else None
        self.data[key] = (str(value), expires_at)
        return True

    async def get(self, key):
        self._check(key)
        return self.data[key][0] if self._alive(key) else None

    async def delete(self, *keys):
        self._check(*keys)
        removed = 0
        for key in keys:
            if self._alive(key):
                del self.data[key]
                removed += 1
        return removed

    async def exists(self, *keys):
        self._check(*keys)
        return sum(1 for key in keys if self._alive(key))

    async def ttl(self, key):
        self._check(key)
        if not self._alive(key):
            return -2
        expires_at = self.data[key][1]
        if expires_at is None:
            return -1
        return int(expires_at - self.clock.time())

    async def scan_iter(self, match=None):
        for key in list(self.data):
            if self._alive(key) and (match is None or fnmatch.fnmatchcase(key, match)):
                self._check(key)
                yield key

    async def config_get(self, name):
        return {name: self.config.get(name, '')}

    async def config_set(self, name, value):
        self.config[name] = value
        return True


class FakePubSub:
    """Replays a fixed list of expired-key events."""

    def __init__(self, keys: List[str], hold_open: bool = False):
        self.keys = keys
        self.hold_open = hold_open
        self.subscribed: List[str] = []

    async def subscribe(self, channel):
        self.subscribed.append(channel)

    async def unsubscribe(self, channel):
        self.subscribed.remove(channel)

    async def listen(self):
        yield {'type': 'subscribe', 'data': 1}
        for key in self.keys:
            yield {'type': 'message', 'data': key}
        if self.hold_open:
            await asyncio.Event().wait()


class FakeLadderStore(LadderStore):
    """Sheets held as lists of string rows; row 0 of the ladder sheet is the header."""

    def __init__(self, sheets: Dict[str, List[List[str]]]):
        self.sheets = sheets
        self.fail_writes = False
        self.yield_reads = False
        self.calls: List[tuple] = []

    def _grid(self, range_spec: str):
        return a1_to_grid_range(range_spec, 0)

    def _write(self, sheet_name, range_spec, values):
        if self.fail_writes:
            raise ExternalStoreError(f"write {sheet_name}!{range_spec}", "quota exceeded")
        grid = self._grid(range_spec)
        rows = self.sheets.setdefault(sheet_name, [])
        start_row = grid.get('startRowIndex', 0)
        start_col = grid['startColumnIndex']
        for offset, values_row in enumerate(values):
            index = start_row + offset
            while len(rows) <= index:
                rows.append([])
            row = rows[index]
            for col_offset, value in enumerate(values_row):
                col = start_col + col_offset
                while len(row) <= col:
                    row.append('')
                row[col] = str(value)

    async def get_range(self, sheet_name, range_spec):
        self.calls.append(('get', sheet_name, range_spec))
        if self.yield_reads:
            # Let other tasks run, as a network round trip would
            await asyncio.sleep(0)
        grid = self._grid(range_spec)
        rows = self.sheets.get(sheet_name, [])
        end_row = grid.get('endRowIndex', len(rows))
        return [
            list(row[grid['startColumnIndex']:grid['endColumnIndex']])
            for row in rows[grid.get('startRowIndex', 0):end_row]
        ]

    async def update_range(self, sheet_name, range_spec, values):
        self.calls.append(('update', sheet_name, range_spec))
        self._write(sheet_name, range_spec, values)

    async def batch_update_cells(self, sheet_name, updates):
        self.calls.append(('batch', sheet_name, [update['range'] for update in updates]))
        for update in updates:
            self._write(sheet_name, update['range'], update['values'])

    async def append_range(self, sheet_name, range_spec, values):
        self.calls.append(('append', sheet_name, range_spec))
        if self.fail_writes:
            raise ExternalStoreError(f"append {sheet_name}", "quota exceeded")
        self.sheets.setdefault(sheet_name, []).extend([list(map(str, row)) for row in values])

    # Test conveniences; ranks are dense so rank N lives at list index N

    def row(self, rank: int) -> List[str]:
        row = self.sheets[LADDER_SHEET][rank]
        return row + [''] * (SheetColumns.COLUMN_COUNT - len(row))

    def set_player(self, rank: int, status: Optional[str] = None, date: Optional[str] = None,
                   opponent: Optional[int] = None, notes: Optional[str] = None) -> None:
        row = self.sheets[LADDER_SHEET][rank]
        while len(row) < SheetColumns.COLUMN_COUNT:
            row.append('')
        if status is not None:
            row[SheetColumns.STATUS] = status
        if date is not None:
            row[SheetColumns.CHALLENGE_DATE] = date
        if opponent is not None:
            row[SheetColumns.OPPONENT_RANK] = str(opponent)
        if notes is not None:
            row[SheetColumns.NOTES] = notes

    def pair(self, rank_a: int, rank_b: int, date: str) -> None:
        """Put two ranks into a mutual challenge."""
        self.set_player(rank_a, status='Challenge', date=date, opponent=rank_b)
        self.set_player(rank_b, status='Challenge', date=date, opponent=rank_a)


def ladder_sheet(size: int = 12, vacation=()) -> List[List[str]]:
    """Header plus ``size`` players; rank N is Player{N} with discord id 1000+N."""
    rows = [list(HEADER)]
    for rank in range(1, size + 1):
        status = 'Vacation' if rank in vacation else 'Available'
        rows.append([str(rank), f'Player{rank}', status, '', '', str(1000 + rank), '', ''])
    return rows


class RecordingNotifier(Notifier):
    def __init__(self):
        self.messages: List[str] = []
        self.embeds: list = []

    async def announce(self, message):
        self.messages.append(message)

    async def announce_embed(self, embed, content=None):
        self.embeds.append(embed)
        if content:
            self.messages.append(content)


def ceil_hours(seconds: float) -> int:
    return math.ceil(seconds / 3600)
