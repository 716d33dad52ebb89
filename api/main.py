"""
api/main.py -- FastAPI application entry point for the library backend.

Exposes the identity and multi-factor authentication subsystem over HTTP.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack:
  1. CORSMiddleware -- adds CORS headers for allowed browser origins
  2. log_requests   -- one access-log line per request

Lifespan handles startup (settings, token issuer, identity engine) and
shutdown (dispose engine) symmetrically. Any configuration problem raises
ConfigurationError during startup and the server never begins accepting
requests.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.store import create_identity_engine
from auth.tokens import TokenIssuer
from core.config import get_settings
from core.errors import (
    ConflictError,
    IdentityError,
    InvalidCodeError,
    InvalidCredentialsError,
    NotFoundError,
    TwoFactorNotEnabledError,
    TwoFactorRequiredError,
    ValidationError,
)

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("library.api")

# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build application-level collaborators once and tear them down on exit.

    Startup order matters:
      1. Settings first -- raises ConfigurationError if JWT settings are missing.
      2. Token issuer second -- refuses an empty key, so it is built before any
         request can reach a login route.
      3. Identity engine last -- creates the schema if needed.
    """
    logger.info("Library API starting up")
    settings = get_settings()
    logging.getLogger("library").setLevel(settings.log_level.upper())
    app.state.settings = settings
    app.state.token_issuer = TokenIssuer.from_settings(settings)
    app.state.engine = create_identity_engine(settings.database_url)
    logger.info("Identity store initialized")

    yield

    app.state.engine.dispose()
    logger.info("Library API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Library API",
    description="Library catalog backend -- identity and two-factor authentication.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the lookup walks this in order with isinstance().
_IDENTITY_ERROR_STATUS: tuple[tuple[type[IdentityError], int], ...] = (
    (ValidationError, 400),
    (TwoFactorRequiredError, 400),
    (TwoFactorNotEnabledError, 400),
    (InvalidCredentialsError, 401),
    (InvalidCodeError, 401),
    (NotFoundError, 404),
    (ConflictError, 409),
)


def _status_for(exc: IdentityError) -> int:
    for error_type, status in _IDENTITY_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Translate an account-operation failure into the error envelope."""
    response = JSONResponse(
        status_code=_status_for(exc),
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Dependencies raise HTTPException with a dict detail; use it directly as
    the error field rather than stringifying it.
    """
    headers = getattr(exc, "headers", None)
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=headers)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
