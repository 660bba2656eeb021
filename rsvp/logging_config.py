"""Logging helpers for structured application logs."""
from __future__ import annotations

import ipaddress
import json
import logging
from typing import Any, Dict

SECURITY_LOGGER = logging.getLogger("rsvp.security")

_EXTRA_FIELDS = (
    "client_ip",
    "action",
    "event",
    "reason",
    "identifier",
    "reset_in",
    "error_kind",
    "status",
    "attempt",
    "row_index",
    "error_count",
)


class JsonFormatter(logging.Formatter):
    """Render log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for attr in _EXTRA_FIELDS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value
        return json.dumps(payload)


def configure_logging() -> None:
    """Configure root logger with JSON formatting."""

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)


def redact_token(token: str) -> str:
    """Keep only a short prefix of a token, enough to correlate log lines."""

    if not token:
        return ""
    return f"{token[:8]}..."


def redact_ip(value: str) -> str:
    """Mask the host part of an IP address."""

    candidate = (value or "").split(",")[0].strip()
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return "unknown"
    if address.version == 4:
        octets = candidate.split(".")
        return ".".join(octets[:3] + ["x"])
    groups = address.exploded.split(":")
    return ":".join(groups[:4]) + "::"


def log_security_event(event: str, **fields: Any) -> None:
    """Emit a structured security event on the dedicated logger."""

    SECURITY_LOGGER.warning("security event: %s", event, extra={"event": event, **fields})
