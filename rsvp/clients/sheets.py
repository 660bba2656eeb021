"""Google Sheets storage for RSVP rows."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from threading import Lock
from typing import Any, List, Mapping, Optional, Protocol, Sequence

import requests
from google.auth import exceptions as google_exceptions
from google.auth.transport.requests import AuthorizedSession
from google.oauth2 import service_account
from requests import Response

from rsvp import tokens
from rsvp.config import Settings
from rsvp.errors import SheetsError, SheetsErrorKind
from rsvp.models import Attendance, RSVPRecord, display_name

LOGGER = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
TOKEN_URI = "https://oauth2.googleapis.com/token"
SHEET_NAME = "RSVPs"
HEADERS = ["Timestamp", "Name", "Attendance", "Guest Count", "Edit Link"]

# Zero-based column positions within a row.
COLUMNS = {
    "timestamp": 0,
    "name": 1,
    "attendance": 2,
    "guest_count": 3,
    "edit_link": 4,
}
UPDATABLE_FIELDS = frozenset({"name", "guest_count"})
MIN_ROW_INDEX = 2
MAX_ROW_INDEX = 10000

_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


class SheetsBackend(Protocol):
    def append_row(self, fields: Sequence[Any]) -> None:
        ...

    def find_row_by_token(self, token: str) -> Optional[RSVPRecord]:
        ...

    def update_row_fields(self, row_index: int, fields: Mapping[str, Any]) -> None:
        ...


def sanitize_cell(value: Any) -> Any:
    """Neutralise values a spreadsheet would evaluate as a formula."""

    if isinstance(value, str) and value.startswith(_FORMULA_PREFIXES):
        return "'" + value
    return value


def build_row(name: str, attendance: Attendance, guest_count: Optional[int], edit_link: str) -> List[Any]:
    return [
        datetime.now(timezone.utc).isoformat(),
        name,
        attendance.label,
        guest_count if attendance is Attendance.ATTENDING else "",
        edit_link,
    ]


def _column_letter(field: str) -> str:
    return chr(ord("A") + COLUMNS[field])


def _check_update(row_index: int, fields: Mapping[str, Any]) -> None:
    if not MIN_ROW_INDEX <= row_index <= MAX_ROW_INDEX:
        raise SheetsError(SheetsErrorKind.UNKNOWN, "Invalid row index for update.")
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise SheetsError(SheetsErrorKind.UNKNOWN, f"Fields not updatable: {sorted(unknown)}")


def _parse_guest_count(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _cell(row: Sequence[Any], field: str) -> Any:
    index = COLUMNS[field]
    return row[index] if index < len(row) else ""


def match_row(rows: Sequence[Sequence[Any]], token: str) -> Optional[RSVPRecord]:
    """Find the data row whose edit link carries ``token``.

    ``rows`` includes the header row. Every stored token is compared in
    constant time.
    """

    for position, row in enumerate(rows[1:], start=2):
        if not row:
            continue
        link = _cell(row, "edit_link")
        if not isinstance(link, str) or not link:
            continue
        if tokens.compare(token, tokens.token_from_link(link)):
            return RSVPRecord(
                row_index=position,
                timestamp=str(_cell(row, "timestamp") or ""),
                name=display_name(_cell(row, "name")),
                attendance=Attendance.from_label(_cell(row, "attendance")),
                guest_count=_parse_guest_count(_cell(row, "guest_count")),
                edit_link=link,
            )
    return None


class GoogleSheetsClient:
    """Sheets v4 REST client authenticated as a service account."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self._settings = settings
        self._timeout = settings.sheets_timeout_seconds
        self._base_url = f"{SHEETS_API}/{settings.google_sheet_id}"
        self._session = session or self._authorized_session(settings)

    @staticmethod
    def _authorized_session(settings: Settings) -> requests.Session:
        credentials = service_account.Credentials.from_service_account_info(
            {
                "type": "service_account",
                "client_email": settings.google_service_account_email,
                "private_key": settings.google_private_key,
                "token_uri": TOKEN_URI,
            },
            scopes=SCOPES,
        )
        return AuthorizedSession(credentials)

    def append_row(self, fields: Sequence[Any]) -> None:
        """Append one RSVP row below the existing data."""

        values = [sanitize_cell(value) for value in fields]
        self._request(
            "post",
            f"{self._base_url}/values/{SHEET_NAME}!A:E:append",
            params={"valueInputOption": "USER_ENTERED", "insertDataOption": "INSERT_ROWS"},
            json={"values": [values]},
        )

    def find_row_by_token(self, token: str) -> Optional[RSVPRecord]:
        response = self._request("get", f"{self._base_url}/values/{SHEET_NAME}!A:E")
        try:
            rows = response.json().get("values") or []
        except (ValueError, AttributeError) as exc:
            LOGGER.error(
                "sheets returned an unreadable body",
                extra={"error_kind": SheetsErrorKind.UNKNOWN.value},
            )
            raise SheetsError(
                SheetsErrorKind.UNKNOWN, "Google Sheets API returned an unreadable response."
            ) from exc
        if len(rows) <= 1:
            return None
        return match_row(rows, token)

    def update_row_fields(self, row_index: int, fields: Mapping[str, Any]) -> None:
        """Overwrite only the given columns of one row in a single batch."""

        _check_update(row_index, fields)
        data = [
            {
                "range": f"{SHEET_NAME}!{_column_letter(field)}{row_index}",
                "values": [[sanitize_cell(value)]],
            }
            for field, value in fields.items()
        ]
        self._request(
            "post",
            f"{self._base_url}/values:batchUpdate",
            json={"valueInputOption": "USER_ENTERED", "data": data},
        )

    def initialize_sheet(self) -> None:
        """Write the header row."""

        self._request(
            "put",
            f"{self._base_url}/values/{SHEET_NAME}!A1:E1",
            params={"valueInputOption": "USER_ENTERED"},
            json={"values": [HEADERS]},
        )

    def _request(self, method: str, url: str, **kwargs: Any) -> Response:
        try:
            response = self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.Timeout as exc:
            LOGGER.error("sheets request timed out", extra={"error_kind": SheetsErrorKind.TIMEOUT.value})
            raise SheetsError(SheetsErrorKind.TIMEOUT, "Google Sheets API request timed out.") from exc
        except requests.ConnectionError as exc:
            LOGGER.error("sheets connection failed", extra={"error_kind": SheetsErrorKind.TIMEOUT.value})
            raise SheetsError(SheetsErrorKind.TIMEOUT, "Google Sheets API is unreachable.") from exc
        except google_exceptions.RefreshError as exc:
            LOGGER.error("sheets credentials refresh failed", extra={"error_kind": SheetsErrorKind.AUTH_FAILED.value})
            raise SheetsError(SheetsErrorKind.AUTH_FAILED, "Google Sheets API authentication failed.") from exc
        except google_exceptions.TransportError as exc:
            LOGGER.error("sheets token endpoint unreachable", extra={"error_kind": SheetsErrorKind.TIMEOUT.value})
            raise SheetsError(SheetsErrorKind.TIMEOUT, "Google Sheets API is unreachable.") from exc
        self._raise_for_status(response)
        return response

    def _raise_for_status(self, response: Response) -> None:
        """Map a failed response onto :class:`SheetsErrorKind`."""

        if response.ok:
            return
        status = response.status_code
        detail = response.text
        if status == 429 or "quota" in detail.lower():
            kind, message = SheetsErrorKind.QUOTA_EXCEEDED, "Google Sheets API quota exceeded."
        elif status in (401, 403):
            kind, message = SheetsErrorKind.AUTH_FAILED, "Google Sheets API authentication failed."
        elif status == 404:
            kind, message = SheetsErrorKind.NOT_FOUND, "Google Sheets spreadsheet not found."
        elif status in (408, 504):
            kind, message = SheetsErrorKind.TIMEOUT, "Google Sheets API request timed out."
        else:
            kind, message = SheetsErrorKind.UNKNOWN, f"Google Sheets API error ({status})."
        LOGGER.error(
            "sheets request failed",
            extra={"status": status, "error_kind": kind.value},
        )
        raise SheetsError(kind, message, status=status)


class InMemorySheet:
    """List-backed stand-in for the spreadsheet, row 1 being the header."""

    def __init__(self) -> None:
        self._rows: List[List[Any]] = [list(HEADERS)]
        self._lock = Lock()

    @property
    def rows(self) -> List[List[Any]]:
        with self._lock:
            return [list(row) for row in self._rows]

    def append_row(self, fields: Sequence[Any]) -> None:
        with self._lock:
            self._rows.append(list(fields))

    def find_row_by_token(self, token: str) -> Optional[RSVPRecord]:
        with self._lock:
            snapshot = [list(row) for row in self._rows]
        return match_row(snapshot, token)

    def update_row_fields(self, row_index: int, fields: Mapping[str, Any]) -> None:
        _check_update(row_index, fields)
        with self._lock:
            if row_index > len(self._rows):
                raise SheetsError(SheetsErrorKind.NOT_FOUND, f"Row {row_index} does not exist.")
            row = self._rows[row_index - 1]
            for field, value in fields.items():
                row[COLUMNS[field]] = value


def build_sheets_backend(settings: Settings) -> SheetsBackend:
    if settings.sheets_backend == "memory":
        LOGGER.warning("using in-memory RSVP storage; data is lost on restart")
        return InMemorySheet()
    return GoogleSheetsClient(settings)

