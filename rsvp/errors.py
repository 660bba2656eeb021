"""Error taxonomy shared by the spreadsheet boundary and the RSVP flow."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class SheetsErrorKind(str, Enum):
    """Failure kinds reported by the spreadsheet collaborator."""

    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_FAILED = "auth_failed"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class SheetsError(RuntimeError):
    """Raised when a spreadsheet call fails."""

    def __init__(self, kind: SheetsErrorKind, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.status = status

    @property
    def transient(self) -> bool:
        """Timeouts, quota rejections and server-side failures may succeed on retry."""

        if self.kind in (SheetsErrorKind.TIMEOUT, SheetsErrorKind.QUOTA_EXCEEDED):
            return True
        return self.kind is SheetsErrorKind.UNKNOWN and self.status is not None and self.status >= 500


class ErrorKind(str, Enum):
    """Outcome kinds of a rejected RSVP operation."""

    DEADLINE_PASSED = "deadline_passed"
    INVALID_TOKEN = "invalid_token"
    RATE_LIMITED = "rate_limited"
    VALIDATION_FAILED = "validation_failed"
    STATUS_NOT_ELIGIBLE = "status_not_eligible"
    UPSTREAM_TRANSIENT = "upstream_transient"
    UPSTREAM_FATAL = "upstream_fatal"
    UNKNOWN = "unknown"


MESSAGES = {
    ErrorKind.DEADLINE_PASSED: "RSVP is closed. Please contact the organiser with any questions.",
    ErrorKind.INVALID_TOKEN: "This edit link is invalid or has expired.",
    ErrorKind.VALIDATION_FAILED: "Please correct the details provided.",
    ErrorKind.STATUS_NOT_ELIGIBLE: "Only RSVPs marked as attending can be updated.",
    ErrorKind.UPSTREAM_TRANSIENT: "The service is busy. Please try again shortly.",
    ErrorKind.UPSTREAM_FATAL: "The service is busy. Please try again shortly.",
    ErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}


def rate_limited_message(retry_in: str) -> str:
    return f"Too many attempts. Please try again in {retry_in}."
