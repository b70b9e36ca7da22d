"""
api/main.py -- FastAPI application entry point for the ServiceDesk API.

Serves the CMDB and user-administration endpoints the web front end calls
under /api.

Run with:      uvicorn asgi:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. log_requests      -- one log line per request with status and latency
  2. answer_options    -- 200 for bare OPTIONS requests on any path
  3. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware    -- CORS headers and preflight answers for browser origins

Lifespan opens both stores (CMDB and user directory) on startup and disposes
their engines on shutdown. In development mode it also makes sure the
development identity exists in the directory.

Errors: route and dependency code raises core.errors classes; the handlers
below render every failure, including framework 404/405 and request schema
errors, as {"success": false, "error", "code", "details"?}.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.v1.assignment_groups import router as assignment_groups_router
from api.routes.v1.configuration_items import router as configuration_items_router
from api.routes.v1.user_roles import router as user_roles_router
from auth.models import Role, User
from auth.store import UserStore
from cmdb.store import CMDBStore
from core.config import get_settings
from core.errors import MethodNotAllowed, NotFound, ServiceError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("servicedesk.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def _ensure_dev_identity(user_store: UserStore) -> None:
    """Add the development identity to the directory if it is missing."""
    settings = get_settings()
    if user_store.email_exists(settings.dev_identity_email):
        return
    user_store.create_user(
        User(
            email=settings.dev_identity_email,
            display_name="Development User",
            role=Role.parse(settings.dev_identity_role),
            external_id=settings.dev_identity_id,
        ),
        created_by="system",
    )
    logger.warning(
        "Development identity %s added with role %s",
        settings.dev_identity_email,
        settings.dev_identity_role,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the stores on startup and dispose their engines on shutdown."""
    settings = get_settings()
    logger.info("ServiceDesk API starting up")
    app.state.cmdb = CMDBStore()
    logger.info("CMDB initialized")
    app.state.user_store = UserStore()
    logger.info("User directory initialized (dev_mode=%s)", settings.dev_mode)
    if settings.dev_mode and settings.auto_create_schema:
        _ensure_dev_identity(app.state.user_store)

    yield

    app.state.cmdb.close()
    app.state.user_store.close()
    logger.info("ServiceDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ServiceDesk API",
    description="Configuration management database and user administration for the ServiceDesk portal.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware insert at the front of the stack, so the
# last one registered sees the request first.
# ---------------------------------------------------------------------------

_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": f"Content-Type, Authorization, {get_settings().principal_header}",
}

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_allow_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", get_settings().principal_header],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def answer_options(request: Request, call_next):
    """Answer OPTIONS on any path with 200.

    Browser preflights (those carrying Access-Control-Request-Method) go on
    to CORSMiddleware so the configured origins still apply.
    """
    if request.method == "OPTIONS" and "access-control-request-method" not in request.headers:
        return Response(status_code=200, headers=_PREFLIGHT_HEADERS)
    return await call_next(request)


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

app.include_router(configuration_items_router, prefix="/api", tags=["Configuration Items"])
app.include_router(assignment_groups_router, prefix="/api", tags=["Assignment Groups"])
app.include_router(user_roles_router, prefix="/api", tags=["User Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so the front end can
# read errors uniformly.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str, details=None) -> JSONResponse:
    body = ErrorResponse(error=message, code=code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message, exc.code, exc.details)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 in the error envelope with a Retry-After header.

    Retry-After is the length of the exceeded limit's window in seconds.
    """
    retry_after = exc.limit.limit.get_expiry()
    response = _error(429, "Too many requests", "rate_limited", str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body or query parameters that do not fit the schema are a 400."""
    details = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
    return _error(400, "Request validation failed", "validation_error", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework 404/405 (unknown path, unsupported method) as the envelope."""
    if exc.status_code == 404:
        error: ServiceError = NotFound("Not found", details={"path": request.url.path})
    elif exc.status_code == 405:
        error = MethodNotAllowed("Method not allowed", details={"method": request.method})
    else:
        return _error(exc.status_code, str(exc.detail), f"http_{exc.status_code}")
    response = _error(error.status_code, error.message, error.code, error.details)
    if exc.headers:
        response.headers.update(exc.headers)
    return response


def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    details = None
    if get_settings().dev_mode:
        details = {"type": type(exc).__name__, "message": str(exc)}
    return _error(500, "An unexpected error occurred", "internal_error", details)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    return _internal_error(request, exc)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log; the client only sees diagnostic
    detail when development mode is on.
    """
    return _internal_error(request, exc)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit: load balancer probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and whether the database answers."""
    database = "ok"
    try:
        with request.app.state.cmdb.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "unavailable"
    return HealthResponse(status="ok" if database == "ok" else "degraded", version=VERSION, database=database)
