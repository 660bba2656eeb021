"""RSVP operations and the authorization sequence guarding them.

Each operation runs its checks in a fixed order and stops at the first
failure:

1. deadline
2. token syntax (edit and fetch only)
3. rate limit (client IP for submit, token for edit and fetch)
4. token schema re-check (edit and fetch only)
5. record lookup by token
6. attendance gate
7. payload validation
8. mutation, retried on transient spreadsheet failures

Every public method returns an :class:`ActionResult`; no exception escapes.
"""
from __future__ import annotations

import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, TypeVar

from pydantic import ValidationError

from rsvp import tokens
from rsvp.clients.sheets import SheetsBackend, build_row
from rsvp.config import Settings
from rsvp.errors import MESSAGES, ErrorKind, SheetsError, rate_limited_message
from rsvp.logging_config import log_security_event, redact_ip, redact_token
from rsvp.models import ActionResult, Attendance, RSVPEdit, RSVPRecord, RSVPSubmission
from rsvp.rate_limit import RateLimitRegistry, SlidingWindowLimiter, format_reset_time
from rsvp.retry import retry_with_backoff

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SUBMITTED_ATTENDING = "Thank you! Your RSVP has been received. We look forward to seeing you!"
SUBMITTED_NOT_ATTENDING = "Thank you for letting us know."
UPDATED = "Your RSVP has been updated!"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _field_errors(exc: ValidationError) -> Dict[str, str]:
    errors: Dict[str, str] = {}
    for issue in exc.errors():
        field = str(issue["loc"][0]) if issue.get("loc") else "payload"
        message = issue.get("msg", "Invalid value.")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        errors.setdefault(field, message)
    return errors


class RSVPService:
    def __init__(
        self,
        settings: Settings,
        sheets: SheetsBackend,
        limiters: RateLimitRegistry,
        *,
        now: Callable[[], datetime] = _utcnow,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._sheets = sheets
        self._limiters = limiters
        self._now = now
        self._clock = clock
        self._sleep = sleep

    # -- public operations -------------------------------------------------

    def submit_rsvp(self, payload: Any, client_ip: str) -> ActionResult:
        return self._guard("submit_rsvp", lambda: self._submit(payload, client_ip))

    def update_rsvp(self, token: Any, payload: Any) -> ActionResult:
        return self._guard("update_rsvp", lambda: self._update(token, payload))

    def fetch_for_edit(self, token: Any) -> ActionResult:
        return self._guard("fetch_for_edit", lambda: self._fetch(token))

    # -- flows ---------------------------------------------------------------

    def _submit(self, payload: Any, client_ip: str) -> ActionResult:
        action = "submit_rsvp"
        if self._deadline_passed():
            return self._deadline_result()

        ip = (client_ip or "unknown").split(",")[0].strip() or "unknown"
        rejected = self._check_rate_limit(self._limiters.submit, ip, action, redact_ip(ip))
        if rejected:
            return rejected

        try:
            submission = RSVPSubmission.model_validate(payload)
        except ValidationError as exc:
            return self._validation_failed(action, exc)

        token = tokens.generate()
        edit_link = tokens.build_edit_link(self._settings.app_url, token)
        row = build_row(submission.name, submission.attendance, submission.guest_count, edit_link)
        self._with_retry(lambda: self._sheets.append_row(row), "append_row")

        LOGGER.info("rsvp submitted", extra={"action": action, "identifier": redact_token(token)})
        attending = submission.attendance is Attendance.ATTENDING
        return ActionResult(
            success=True,
            message=SUBMITTED_ATTENDING if attending else SUBMITTED_NOT_ATTENDING,
            edit_link=edit_link,
        )

    def _update(self, token: Any, payload: Any) -> ActionResult:
        action = "update_rsvp"
        checked = self._authorize(token, self._limiters.edit, action)
        if isinstance(checked, ActionResult):
            return checked
        record, valid_token = checked

        try:
            edit = RSVPEdit.model_validate(payload)
        except ValidationError as exc:
            return self._validation_failed(action, exc)

        fields = {"name": edit.name, "guest_count": edit.guest_count}
        self._with_retry(
            lambda: self._sheets.update_row_fields(record.row_index, fields), "update_row_fields"
        )
        LOGGER.info(
            "rsvp updated",
            extra={"action": action, "identifier": redact_token(valid_token), "row_index": record.row_index},
        )
        return ActionResult(success=True, message=UPDATED)

    def _fetch(self, token: Any) -> ActionResult:
        checked = self._authorize(token, self._limiters.view, "fetch_for_edit")
        if isinstance(checked, ActionResult):
            return checked
        record, _ = checked
        return ActionResult(success=True, name=record.name, guest_count=record.guest_count or 1)

    # -- shared steps --------------------------------------------------------

    def _authorize(
        self, token: Any, limiter: SlidingWindowLimiter, action: str
    ) -> ActionResult | Tuple[RSVPRecord, str]:
        """Run steps 1-6 for a token-bearing operation."""

        if self._deadline_passed():
            return self._deadline_result()

        valid_token = tokens.validate_syntax(token)
        if valid_token is None:
            return self._invalid_token(action, "invalid_format")

        rejected = self._check_rate_limit(limiter, valid_token, action, redact_token(valid_token))
        if rejected:
            return rejected

        if not tokens.matches_schema(valid_token):
            return self._invalid_token(action, "schema_validation_failed")

        record = self._with_retry(lambda: self._sheets.find_row_by_token(valid_token), "find_row_by_token")
        if record is None:
            return self._invalid_token(action, "token_not_found")

        if record.attendance is not Attendance.ATTENDING:
            return ActionResult.failure(
                ErrorKind.STATUS_NOT_ELIGIBLE, MESSAGES[ErrorKind.STATUS_NOT_ELIGIBLE]
            )
        return record, valid_token

    def _deadline_passed(self) -> bool:
        return self._now() > self._settings.rsvp_deadline

    def _deadline_result(self) -> ActionResult:
        return ActionResult.failure(ErrorKind.DEADLINE_PASSED, MESSAGES[ErrorKind.DEADLINE_PASSED])

    def _check_rate_limit(
        self, limiter: SlidingWindowLimiter, identifier: str, action: str, redacted: str
    ) -> Optional[ActionResult]:
        result = limiter.limit(identifier)
        if result.allowed:
            return None
        retry_in = format_reset_time(result.reset_at, self._clock)
        log_security_event(
            "rate_limit_exceeded",
            action=action,
            identifier=redacted,
            reset_in=retry_in,
        )
        return ActionResult.failure(
            ErrorKind.RATE_LIMITED,
            rate_limited_message(retry_in),
            retry_after_seconds=max(0, math.ceil(result.reset_at - self._clock())),
        )

    def _invalid_token(self, action: str, reason: str) -> ActionResult:
        log_security_event("invalid_token", action=action, reason=reason)
        return ActionResult.failure(ErrorKind.INVALID_TOKEN, MESSAGES[ErrorKind.INVALID_TOKEN])

    def _validation_failed(self, action: str, exc: ValidationError) -> ActionResult:
        log_security_event("validation_failed", action=action, error_count=exc.error_count())
        return ActionResult.failure(
            ErrorKind.VALIDATION_FAILED,
            MESSAGES[ErrorKind.VALIDATION_FAILED],
            errors=_field_errors(exc),
        )

    def _with_retry(self, operation: Callable[[], T], description: str) -> T:
        return retry_with_backoff(
            operation,
            attempts=self._settings.retry_attempts,
            base_delay=self._settings.retry_base_delay_seconds,
            sleep=self._sleep,
            description=description,
        )

    def _guard(self, action: str, flow: Callable[[], ActionResult]) -> ActionResult:
        try:
            return flow()
        except SheetsError as exc:
            LOGGER.error(
                "sheets failure",
                exc_info=True,
                extra={"action": action, "error_kind": exc.kind.value, "status": exc.status},
            )
            log_security_event("api_error", action=action, error_kind=exc.kind.value)
            return ActionResult.failure(ErrorKind.UPSTREAM_FATAL, MESSAGES[ErrorKind.UPSTREAM_FATAL])
        except Exception:  # noqa: BLE001
            LOGGER.exception("unexpected failure", extra={"action": action})
            return ActionResult.failure(ErrorKind.UNKNOWN, MESSAGES[ErrorKind.UNKNOWN])
