"""RSVP records, request payloads and operation results."""
from __future__ import annotations

import html
import re
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationInfo, field_validator

from rsvp.errors import ErrorKind

NAME_PATTERN = re.compile(r"[a-zA-Z\u00C0-\u017F\s'\-.]+")
NAME_MAX_LENGTH = 100
GUEST_COUNT_MIN = 1
GUEST_COUNT_MAX = 10


class Attendance(str, Enum):
    ATTENDING = "attending"
    NOT_ATTENDING = "not_attending"

    @property
    def label(self) -> str:
        """Text stored in the spreadsheet's attendance column."""

        return "Attending" if self is Attendance.ATTENDING else "Not Attending"

    @classmethod
    def from_label(cls, label: Optional[str]) -> "Attendance":
        if (label or "").strip().lower() == "attending":
            return cls.ATTENDING
        return cls.NOT_ATTENDING


@dataclass(frozen=True)
class RSVPRecord:
    """An RSVP row as read back from the spreadsheet (1-based ``row_index``)."""

    row_index: int
    timestamp: str
    name: str
    attendance: Attendance
    guest_count: Optional[int]
    edit_link: str


def _clean_name(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    return value


def display_name(value: Any) -> str:
    """Return a stored name safe to hand back to a browser.

    Rows can be edited by hand in the spreadsheet, so anything that would not
    pass the submission rules is HTML-escaped.
    """

    name = str(value or "").strip()
    try:
        return _check_name(name)
    except ValueError:
        return html.escape(name)


def _check_name(value: str) -> str:
    if not value:
        raise ValueError("Name is required.")
    if len(value) > NAME_MAX_LENGTH:
        raise ValueError(f"Name is too long (maximum {NAME_MAX_LENGTH} characters).")
    if NAME_PATTERN.fullmatch(value) is None:
        raise ValueError(
            "Name may only contain letters, spaces, apostrophes ('), hyphens (-) and full stops (.)"
        )
    return value


GuestCount = Annotated[StrictInt, Field(ge=GUEST_COUNT_MIN, le=GUEST_COUNT_MAX)]


class RSVPSubmission(BaseModel):
    """Payload of a new RSVP."""

    model_config = ConfigDict(extra="ignore")

    name: str
    attendance: Attendance
    guest_count: Optional[GuestCount] = Field(default=None, validate_default=True)

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, value: Any) -> Any:
        return _clean_name(value)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value)

    @field_validator("guest_count", mode="before")
    @classmethod
    def drop_guest_count_when_not_attending(cls, value: Any, info: ValidationInfo) -> Any:
        if info.data.get("attendance") is Attendance.NOT_ATTENDING:
            return None
        return value

    @field_validator("guest_count")
    @classmethod
    def require_guest_count_when_attending(cls, value: Optional[int], info: ValidationInfo) -> Optional[int]:
        if info.data.get("attendance") is Attendance.ATTENDING and value is None:
            raise ValueError("Please state how many guests will attend.")
        return value


class RSVPEdit(BaseModel):
    """Fields an RSVP owner may change; anything else is rejected."""

    model_config = ConfigDict(extra="forbid")

    name: str
    guest_count: GuestCount

    @field_validator("name", mode="before")
    @classmethod
    def normalize_name(cls, value: Any) -> Any:
        return _clean_name(value)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value)


@dataclass
class ActionResult:
    """Structured outcome returned by every RSVP operation."""

    success: bool
    message: str = ""
    edit_link: Optional[str] = None
    name: Optional[str] = None
    guest_count: Optional[int] = None
    errors: Optional[Dict[str, str]] = None
    error: Optional[ErrorKind] = None
    retry_after_seconds: Optional[int] = None

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **extra: Any) -> "ActionResult":
        return cls(success=False, message=message, error=kind, **extra)

    def to_dict(self) -> Dict[str, Any]:
        payload = {key: value for key, value in asdict(self).items() if value is not None}
        payload.pop("retry_after_seconds", None)
        if self.error is not None:
            payload["error"] = self.error.value
        return payload
