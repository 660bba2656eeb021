"""Application settings and environment loading utilities."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Optional

DEFAULT_DEADLINE = "2026-01-10T23:59:59+08:00"


def _load_dotenv() -> None:
    env_path = Path(".env")
    if not env_path.exists():
        return
    for line in env_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


_load_dotenv()


def _validate_non_empty(value: Optional[str], name: str) -> str:
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def _env_truthy(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def cors_origins_from_env() -> tuple[str, ...]:
    origins = tuple(
        part.strip() for part in os.getenv("RSVP_CORS_ORIGINS", "*").split(",") if part.strip()
    )
    return origins or ("*",)


def parse_deadline(value: str) -> datetime:
    """Parse an ISO-8601 deadline, treating naive values as UTC."""

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise RuntimeError(f"RSVP_DEADLINE must be a valid datetime string: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Settings:
    """Runtime configuration derived from environment variables."""

    environment: str = "development"
    app_url: str = "http://localhost:8000"
    rsvp_deadline: datetime = parse_deadline(DEFAULT_DEADLINE)
    sheets_backend: str = "google"
    google_sheet_id: str = ""
    google_service_account_email: str = ""
    google_private_key: str = ""
    sheets_timeout_seconds: float = 10.0
    redis_url: str = ""
    rate_limit_allow_local: bool = False
    retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def local_rate_limit_permitted(self) -> bool:
        """Whether the process-local counter store may be used."""

        return not self.is_production or self.rate_limit_allow_local

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("RSVP_ENV", "development").strip().lower()
        if environment not in {"development", "production", "test"}:
            raise RuntimeError(f"RSVP_ENV must be development, production or test, got {environment!r}")

        backend = os.getenv("RSVP_SHEETS_BACKEND", "google").strip().lower()
        sheet_id = email = private_key = ""
        if backend == "google":
            sheet_id = _validate_non_empty(os.getenv("GOOGLE_SHEET_ID"), "GOOGLE_SHEET_ID")
            email = _validate_non_empty(
                os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL"), "GOOGLE_SERVICE_ACCOUNT_EMAIL"
            )
            private_key = _validate_non_empty(os.getenv("GOOGLE_PRIVATE_KEY"), "GOOGLE_PRIVATE_KEY")
            private_key = private_key.replace("\\n", "\n")
        elif backend != "memory":
            raise RuntimeError(f"RSVP_SHEETS_BACKEND must be google or memory, got {backend!r}")

        return cls(
            environment=environment,
            app_url=os.getenv("RSVP_APP_URL", "http://localhost:8000").rstrip("/"),
            rsvp_deadline=parse_deadline(os.getenv("RSVP_DEADLINE", DEFAULT_DEADLINE)),
            sheets_backend=backend,
            google_sheet_id=sheet_id,
            google_service_account_email=email,
            google_private_key=private_key,
            sheets_timeout_seconds=float(os.getenv("RSVP_SHEETS_TIMEOUT_SECONDS", "10")),
            redis_url=os.getenv("REDIS_URL", "").strip(),
            rate_limit_allow_local=_env_truthy(os.getenv("RATE_LIMIT_ALLOW_LOCAL")),
            retry_attempts=int(os.getenv("RSVP_RETRY_ATTEMPTS", "3")),
            retry_base_delay_seconds=float(os.getenv("RSVP_RETRY_BASE_DELAY_SECONDS", "1.0")),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings.from_env()
