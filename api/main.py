"""
api/main.py -- FastAPI application entry point for the identity service.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. log_requests          -- one access-log line per request

Lifespan builds the credential store and the AuthService on startup and, on
shutdown, drains in-flight last_seen writes before closing the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import ErrorKind, IdentityError
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("arena.api")

# ---------------------------------------------------------------------------
# Error kind -> HTTP status
#
# One row per ErrorKind. tests/test_errors.py fails if a kind is added without
# a row here.
# ---------------------------------------------------------------------------

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.AUTH: 401,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.SESSION_EXPIRED: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.INVALID_SIGNATURE: 401,
    ErrorKind.NO_VALID_CODE: 401,
    ErrorKind.PROVIDER: 502,
    ErrorKind.DELIVERY: 503,
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store and the service on startup; drain and close on shutdown.

    The store is created first because the service holds it.
    """
    settings = get_settings()
    logging.getLogger("arena").setLevel(settings.log_level.upper())
    logger.info("Identity API starting up")

    app.state.settings = settings
    app.state.store = CredentialStore(settings.database_url)
    app.state.auth_service = AuthService.from_settings(settings, app.state.store)
    logger.info("Auth initialized (database=%s)", app.state.store.engine.url.render_as_string(hide_password=True))

    yield

    await app.state.auth_service.aclose()
    app.state.store.close()
    logger.info("Identity API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Arena Identity API",
    description="Registration, login with optional email second factor, federated sign-in and session refresh.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """One access-log line per request: method, path, status, latency, client."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "unknown"
    logger.info("%s %s -> %d in %.1fms (%s)", request.method, request.url.path, response.status_code, elapsed_ms, client)
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves in the {"error": {"code", "message", "detail"}}
# envelope built by _error_response().
# ---------------------------------------------------------------------------


def _error_response(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Map a typed identity failure to its status code via STATUS_BY_KIND.

    For validation failures detail lists the individual rule messages.
    """
    errors = exc.meta.get("errors")
    return _error_response(
        STATUS_BY_KIND[exc.kind],
        exc.kind.value,
        exc.message,
        detail="; ".join(errors) if errors else None,
        headers={"Cache-Control": "no-store"},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or missing/mistyped fields: 422."""
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    # Dependencies and routes raise with a ready-made {"code", "message"} dict.
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: store outages, hashing failures, bugs.

    The traceback goes to the server log only.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself; needs no auth and no router.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and per-component status."""
    try:
        db_ok = await asyncio.to_thread(request.app.state.store.ping)
    except Exception:
        logger.exception("Health check: database ping failed")
        db_ok = False
    return HealthResponse(
        status="healthy" if db_ok else "degraded",
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
