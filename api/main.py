"""
api/main.py -- FastAPI application entry point for tokengate.

Serves the HTTP forward-auth check, the PAT management API and /healthz.
The gRPC ext_authz server (rpc/server.py) shares the same engine wiring but
runs as its own process.

Run with:      python main.py serve-http
               uvicorn api.main:app

Middleware stack (outermost to innermost):
  1. log_requests      -- one line per request, skips /healthz
  2. PATCORSMiddleware -- CORS headers, only on /pat.v1.PATService/* paths
  3. SlowAPIMiddleware -- default limits only; per-route limits are enforced
                          by the @limiter.limit() wrapper on the route

Starlette makes the most recently added middleware the outermost one, so they
are registered in reverse order below.

Lifespan builds the shared Redis client and IdP session once, wires them into
the Authorizer and PATManager on app.state, and closes them on shutdown.
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
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.forward_auth import router as forward_auth_router
from api.routes.pat import router as pat_router
from cache.store import CredentialCache
from core.config import configure_logging, get_settings
from core.wiring import build_components

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger("tokengate.api")

PAT_PATH_PREFIX = "/pat.v1.PATService"
HEALTHZ_PATH = "/healthz"

# Connect protocol headers plus the proxy's trusted identity headers.
_CORS_ALLOW_HEADERS = [
    "Content-Type",
    "Content-Length",
    "Accept-Encoding",
    "Authorization",
    "Accept",
    "Origin",
    "Cache-Control",
    "X-Requested-With",
    "Connect-Protocol-Version",
    "Connect-Content-Encoding",
    "Connect-Timeout-Ms",
    "X-Auth-Request-User",
    "X-Auth-Request-Email",
    "X-Auth-Request-Preferred-Username",
]


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. core/wiring.py owns what gets built.
    """
    logger.info("tokengate API starting up (exchange_mode=%s)", settings.exchange_mode)
    components = build_components(settings)
    app.state.cache = components.cache
    app.state.authorizer = components.authorizer
    app.state.pat_manager = components.pat_manager
    if components.pat_manager is None:
        logger.warning("ADMIN_PAT is not set -- PAT management endpoints are disabled")

    yield

    components.close()
    logger.info("tokengate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="tokengate",
    description="PAT token-exchange authorization front-end: forward-auth check and PAT management.",
    version=settings.version,
    lifespan=lifespan,
)


class PATCORSMiddleware:
    """Apply CORSMiddleware to the PAT management paths only.

    The forward-auth route receives arbitrary forwarded requests, including
    browser preflights destined for upstream services. Those must reach the
    engine untouched, so CORS handling is scoped by path prefix.
    """

    def __init__(self, app: ASGIApp, allowed_origins: list[str]) -> None:
        self.app = app
        self._cors = CORSMiddleware(
            app,
            allow_origins=allowed_origins or ["*"],
            # Credentials only for an explicit allow-list; "*" never with credentials.
            allow_credentials=bool(allowed_origins),
            allow_methods=["POST", "OPTIONS", "GET"],
            allow_headers=_CORS_ALLOW_HEADERS,
            max_age=3600,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"].startswith(PAT_PATH_PREFIX):
            await self._cors(scope, receive, send)
            return
        await self.app(scope, receive, send)


app.add_middleware(SlowAPIMiddleware)
app.add_middleware(PATCORSMiddleware, allowed_origins=settings.cors_allowed_origins)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    path = request.url.path
    if path == HEALTHZ_PATH:
        return response

    ms = (time.perf_counter() - start) * 1000
    level = logging.ERROR if response.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(forward_auth_router, tags=["Forward auth"])
app.include_router(pat_router, tags=["PAT management"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when the request body fails validation."""
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

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump()
    (a dict). When detail is already a structured dict, use it directly as the
    error field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged only, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="internal server error",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit and no auth --
# probes from the orchestrator must never be throttled or rejected.
# ---------------------------------------------------------------------------


@app.get(HEALTHZ_PATH, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and a Redis reachability check."""
    cache: CredentialCache = request.app.state.cache
    components = {
        "app": "ok",
        "cache": "ok" if cache.ping() else "unavailable",
    }
    status = "ok" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=settings.version, components=components)
