"""Capability tokens that stand in for a login when editing an RSVP."""
from __future__ import annotations

import hmac
import re
import secrets
import string
from typing import Any, Optional

TOKEN_BYTES = 32
TOKEN_LENGTH = TOKEN_BYTES * 2
TOKEN_PATTERN = re.compile(r"[a-f0-9]{64}")

_LOWER_HEX = frozenset(string.digits + "abcdef")


def generate() -> str:
    """Return 32 bytes from the OS CSPRNG as 64 lowercase hex characters."""

    return secrets.token_hex(TOKEN_BYTES)


def validate_syntax(candidate: Any) -> Optional[str]:
    """Return ``candidate`` unchanged if it is a well-formed token, else ``None``."""

    if not isinstance(candidate, str):
        return None
    if TOKEN_PATTERN.fullmatch(candidate) is None:
        return None
    return candidate


def matches_schema(candidate: Any) -> bool:
    """Second, independent token check: exact length and lowercase hex alphabet."""

    return (
        isinstance(candidate, str)
        and len(candidate) == TOKEN_LENGTH
        and set(candidate) <= _LOWER_HEX
    )


def compare(candidate: Any, stored: Any) -> bool:
    """Constant-time equality of two tokens.

    Only the lengths can leak through timing, and token length is public.
    """

    if not isinstance(candidate, str) or not isinstance(stored, str) or not stored:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), stored.encode("utf-8"))


def build_edit_link(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/edit/{token}"


def token_from_link(link: str) -> str:
    """Extract the token from a ``<base-url>/edit/<token>`` link."""

    return (link or "").strip().rstrip("/").rsplit("/", 1)[-1]
