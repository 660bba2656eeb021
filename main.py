"""FastAPI application exposing the RSVP submit, fetch-for-edit and update operations."""
from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any

from fastapi import Body, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rsvp.clients.sheets import build_sheets_backend
from rsvp.config import cors_origins_from_env, get_settings
from rsvp.counter_store import build_counter_store
from rsvp.errors import ErrorKind
from rsvp.logging_config import configure_logging, redact_ip
from rsvp.models import ActionResult
from rsvp.rate_limit import RateLimitRegistry
from rsvp.service import RSVPService

configure_logging()
LOGGER = logging.getLogger(__name__)

STATUS_CODES = {
    ErrorKind.DEADLINE_PASSED: 403,
    ErrorKind.INVALID_TOKEN: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.VALIDATION_FAILED: 422,
    ErrorKind.STATUS_NOT_ELIGIBLE: 409,
    ErrorKind.UPSTREAM_TRANSIENT: 503,
    ErrorKind.UPSTREAM_FATAL: 503,
    ErrorKind.UNKNOWN: 500,
}

app = FastAPI(title="Event RSVP")
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(cors_origins_from_env()),
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)


def client_ip_from(request: Request) -> str:
    """Resolve the caller's address, preferring proxy headers."""

    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


@app.middleware("http")
async def log_unhandled_errors(request: Request, call_next):  # type: ignore[override]
    try:
        return await call_next(request)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("Unhandled exception", extra={"client_ip": redact_ip(client_ip_from(request))})
        raise exc


@lru_cache()
def get_service() -> RSVPService:
    """Build the RSVP service once per process."""

    settings = get_settings()
    store = build_counter_store(settings)
    return RSVPService(settings, build_sheets_backend(settings), RateLimitRegistry(store))


def _respond(result: ActionResult, success_status: int = 200) -> JSONResponse:
    if result.success:
        return JSONResponse(status_code=success_status, content=result.to_dict())
    status = STATUS_CODES.get(result.error, 500) if result.error else 500
    headers = {}
    if result.error is ErrorKind.RATE_LIMITED and result.retry_after_seconds is not None:
        headers["Retry-After"] = str(result.retry_after_seconds)
    return JSONResponse(status_code=status, content=result.to_dict(), headers=headers)


@app.post("/api/rsvp")
def submit_rsvp(
    request: Request,
    payload: Any = Body(None),
    service: RSVPService = Depends(get_service),
) -> JSONResponse:
    """Record a new RSVP and return its edit link."""

    return _respond(service.submit_rsvp(payload, client_ip_from(request)), success_status=201)


@app.get("/api/rsvp/{token}")
def fetch_rsvp_for_edit(token: str, service: RSVPService = Depends(get_service)) -> JSONResponse:
    """Return the editable fields of the RSVP bound to ``token``."""

    return _respond(service.fetch_for_edit(token))


@app.put("/api/rsvp/{token}")
def update_rsvp(
    token: str,
    payload: Any = Body(None),
    service: RSVPService = Depends(get_service),
) -> JSONResponse:
    """Change the name and guest count of the RSVP bound to ``token``."""

    return _respond(service.update_rsvp(token, payload))
