"""
api/main.py -- FastAPI application entry point for the KEV catalog API.

Run with:      uvicorn asgi:app --port 4000
               python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware   -- adds CORS headers for allowed browser origins
  2. log_requests     -- one log line per request with latency

Lifespan handles startup (engine, connection check, stores, first refresh,
background refresh task) and shutdown (cancel task, dispose engine)
symmetrically. A database that cannot be reached at startup aborts the
process: there is nothing useful to serve without it.
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
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.catalog import router as catalog_router
from api.routes.keys import router as keys_router
from auth.store import CredentialStore
from catalog.loader import CatalogLoader
from catalog.store import CatalogStore, CatalogUnavailableError
from core.config import get_settings
from core.database import check_connection, create_db_engine

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("kevcatalog.api")


# ---------------------------------------------------------------------------
# Background refresh task
# ---------------------------------------------------------------------------


async def _refresh_loop(app: FastAPI, interval_hours: int) -> None:
    """Refresh the catalog every interval_hours.

    The refresh itself is blocking (requests + SQLAlchemy), so it runs in a
    worker thread via asyncio.to_thread and the event loop keeps serving.
    A failed refresh is logged and the loop carries on; the previous catalog
    keeps being served. CancelledError from task.cancel() during shutdown is
    not an Exception, so it propagates out and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval_hours * 60 * 60)
        try:
            result = await asyncio.to_thread(app.state.loader.refresh)
        except Exception:
            logger.exception("Scheduled KEV refresh failed -- keeping the previous catalog")
            continue
        logger.info("Scheduled KEV refresh complete (%d records)", result.record_count)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Engine + connection check -- fail fast if the database is down.
      2. Stores -- CredentialStore creates api_keys if missing.
      3. First refresh -- so the catalog exists before traffic arrives.
      4. Refresh task last -- references app.state.loader.
    """
    settings = get_settings()
    logger.info("KEV catalog API starting up")

    engine = create_db_engine(settings.sqlalchemy_url(), connect_timeout=settings.db_connect_timeout)
    try:
        check_connection(engine)
    except SQLAlchemyError:
        logger.critical("Database connection failed -- refusing to start")
        engine.dispose()
        raise
    logger.info("Database connected (%s)", engine.url.render_as_string(hide_password=True))

    app.state.engine = engine
    app.state.credential_store = CredentialStore(engine)
    app.state.catalog = CatalogStore(engine)
    app.state.loader = CatalogLoader(
        app.state.catalog,
        feed_url=settings.kev_url,
        temp_dir=settings.kev_temp_dir,
        timeout=settings.feed_timeout_seconds,
    )

    if settings.refresh_on_startup:
        try:
            result = await asyncio.to_thread(app.state.loader.refresh)
            logger.info("KEV catalog loaded (%d records)", result.record_count)
        except Exception:
            logger.exception("Initial KEV refresh failed -- serving the existing catalog, if any")

    app.state.refresh_task = None
    if settings.refresh_interval_hours > 0:
        app.state.refresh_task = asyncio.create_task(_refresh_loop(app, settings.refresh_interval_hours))

    yield

    # Shutdown
    if app.state.refresh_task is not None:
        app.state.refresh_task.cancel()
    engine.dispose()
    logger.info("KEV catalog API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="KEV Catalog API",
    description="Read API over a periodically refreshed copy of the CISA Known Exploited Vulnerabilities catalog.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "X-API-Key", "App-Name"],
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
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(CatalogUnavailableError)
async def catalog_unavailable_handler(request: Request, exc: CatalogUnavailableError) -> JSONResponse:
    """Return 503 when the catalog has not been loaded yet (or lacks a queried column)."""
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(
            error=ErrorDetail(
                code="catalog_unavailable",
                message=str(exc),
            )
        ).model_dump(),
    )


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

    Route handlers and the auth gate raise HTTPException with a dict detail.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Defined before the catalog router is included: GET /{vendor} would
# otherwise capture /health. No auth -- load balancers must reach it.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version and the state of the database and catalog."""
    components = {"app": "ok"}
    try:
        check_connection(request.app.state.engine)
        components["database"] = "ok"
        components["catalog"] = "ok" if request.app.state.catalog.has_catalog() else "not_loaded"
    except SQLAlchemyError:
        components["database"] = "error"
        components["catalog"] = "unknown"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)


# ---------------------------------------------------------------------------
# Router registration -- catalog router LAST (it owns the /{vendor} catch-all)
# ---------------------------------------------------------------------------

app.include_router(keys_router, tags=["API Keys"])
app.include_router(catalog_router, tags=["Catalog"])
