"""
Ladder store adapters.

``LadderStore`` is the narrow tabular interface the ladder logic consumes;
``SheetsLadderStore`` implements it against the Google Sheets v4 API.
"""

import asyncio
import re
from abc import ABC, abstractmethod
from typing import Dict, List, Sequence

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ladder_bot.config import Config
from ladder_bot.utils.exceptions import ExternalStoreError
from ladder_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

A1_CELL = re.compile(r'^([A-Z]+)(\d*)$')


def column_index(letters: str) -> int:
    """Zero-based index of a column label: A -> 0, H -> 7, AA -> 26."""
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - ord('A') + 1)
    return index - 1


def a1_to_grid_range(a1_range: str, sheet_gid: int) -> Dict[str, int]:
    """
    Convert an A1 range such as ``C5:E5`` or ``A2:H`` to a Sheets GridRange.

    Grid indexes are zero-based with exclusive ends; an open-ended row bound
    is left out.
    """
    parts = a1_range.upper().split(':')
    if len(parts) > 2:
        raise ValueError(f"Invalid A1 range: {a1_range}")

    start = A1_CELL.match(parts[0])
    end = A1_CELL.match(parts[-1])
    if not start or not end:
        raise ValueError(f"Invalid A1 range: {a1_range}")

    grid = {
        'sheetId': sheet_gid,
        'startColumnIndex': column_index(start.group(1)),
        'endColumnIndex': column_index(end.group(1)) + 1,
    }
    if start.group(2):
        grid['startRowIndex'] = int(start.group(2)) - 1
    if end.group(2):
        grid['endRowIndex'] = int(end.group(2))
    return grid


class LadderStore(ABC):
    """Tabular store holding the ladder and metrics sheets."""

    @abstractmethod
    async def get_range(self, sheet_name: str, range_spec: str) -> List[List[str]]:
        """Return the rows of a range; trailing empty cells may be missing."""

    @abstractmethod
    async def update_range(self, sheet_name: str, range_spec: str, values: Sequence[Sequence[str]]) -> None:
        """Overwrite a range with the given rows."""

    @abstractmethod
    async def batch_update_cells(self, sheet_name: str, updates: Sequence[dict]) -> None:
        """Apply several ``{range, values, fields}`` cell updates in one request."""

    @abstractmethod
    async def append_range(self, sheet_name: str, range_spec: str, values: Sequence[Sequence[str]]) -> None:
        """Append rows after the last row of a range."""


class SheetsLadderStore(LadderStore):
    """Google Sheets implementation; blocking client calls run in worker threads."""

    SCOPES = ['https://www.googleapis.com/auth/spreadsheets']
    TOKEN_URI = 'https://oauth2.googleapis.com/token'

    def __init__(self, spreadsheet_id: str, service):
        self.spreadsheet_id = spreadsheet_id
        self.service = service
        self._sheet_gids: Dict[str, int] = {}
        self.logger = logger

    @classmethod
    def from_config(cls) -> 'SheetsLadderStore':
        credentials = service_account.Credentials.from_service_account_info(
            {
                'client_email': Config.GOOGLE_CLIENT_EMAIL,
                'private_key': Config.get_google_private_key(),
                'token_uri': cls.TOKEN_URI,
            },
            scopes=cls.SCOPES
        )
        service = build('sheets', 'v4', credentials=credentials, cache_discovery=False)
        return cls(Config.SPREADSHEET_ID, service)

    @staticmethod
    def _qualified(sheet_name: str, range_spec: str) -> str:
        return f"'{sheet_name}'!{range_spec}"

    async def _execute(self, operation: str, request):
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            raise ExternalStoreError(operation, f"HTTP {e.resp.status}: {e}") from e
        except (GoogleAuthError, OSError) as e:
            raise ExternalStoreError(operation, str(e)) from e

    async def _sheet_gid(self, sheet_name: str) -> int:
        if sheet_name not in self._sheet_gids:
            request = self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields='sheets.properties(sheetId,title)'
            )
            metadata = await self._execute('load sheet metadata', request)
            for sheet in metadata.get('sheets', []):
                properties = sheet.get('properties', {})
                self._sheet_gids[properties.get('title')] = properties.get('sheetId')
        if sheet_name not in self._sheet_gids:
            raise ExternalStoreError('resolve sheet', f"Sheet '{sheet_name}' not found")
        return self._sheet_gids[sheet_name]

    async def get_range(self, sheet_name: str, range_spec: str) -> List[List[str]]:
        request = self.service.spreadsheets().values().get(
            spreadsheetId=self.spreadsheet_id,
            range=self._qualified(sheet_name, range_spec)
        )
        result = await self._execute(f"read {sheet_name}!{range_spec}", request)
        return result.get('values', [])

    async def update_range(self, sheet_name: str, range_spec: str, values: Sequence[Sequence[str]]) -> None:
        request = self.service.spreadsheets().values().update(
            spreadsheetId=self.spreadsheet_id,
            range=self._qualified(sheet_name, range_spec),
            valueInputOption='USER_ENTERED',
            body={'values': [list(row) for row in values]}
        )
        await self._execute(f"update {sheet_name}!{range_spec}", request)

    async def batch_update_cells(self, sheet_name: str, updates: Sequence[dict]) -> None:
        if not updates:
            return
        sheet_gid = await self._sheet_gid(sheet_name)
        requests = []
        for update in updates:
            requests.append({
                'updateCells': {
                    'range': a1_to_grid_range(update['range'], sheet_gid),
                    'rows': [
                        {'values': [{'userEnteredValue': {'stringValue': str(value)}} for value in row]}
                        for row in update['values']
                    ],
                    'fields': update.get('fields', 'userEnteredValue'),
                }
            })
        request = self.service.spreadsheets().batchUpdate(
            spreadsheetId=self.spreadsheet_id,
            body={'requests': requests}
        )
        await self._execute(f"batch update {sheet_name} ({len(requests)} ranges)", request)

    async def append_range(self, sheet_name: str, range_spec: str, values: Sequence[Sequence[str]]) -> None:
        request = self.service.spreadsheets().values().append(
            spreadsheetId=self.spreadsheet_id,
            range=self._qualified(sheet_name, range_spec),
            valueInputOption='USER_ENTERED',
            insertDataOption='INSERT_ROWS',
            body={'values': [list(row) for row in values]}
        )
        await self._execute(f"append {sheet_name}!{range_spec}", request)
