"""
FastAPI application entry point for the solar telemetry service.

The lifespan validates configuration, prepares the database (optional schema
creation, default settings), and builds the per-process collaborators kept
on app.state: the ServiceSettings, BearerAuth, the live EventBus and the
latest-value cache. Domain errors are mapped to HTTP status codes here.

CHANGELOG:
- 2026-10-17: Take CORS origins from CorsSettings
- 2026-10-17: Map TelemetryError subclasses to HTTP responses
- 2026-10-17: Own the live bus and latest-value cache in the lifespan
- 2026-10-17: Initial creation
"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from solarmon import __version__
from solarmon.api.admin import router as admin_router
from solarmon.api.data import router as data_router
from solarmon.api.devices import router as devices_router
from solarmon.api.health import router as health_router
from solarmon.api.ingest import router as ingest_router
from solarmon.api.live import router as live_router
from solarmon.api.sensors import router as sensors_router
from solarmon.api.settings import router as settings_router
from solarmon.auth.bearer import BearerAuth, parse_api_tokens
from solarmon.cache.redis_client import LatestCache
from solarmon.config import CorsSettings, ServiceSettings
from solarmon.db import session as db_session
from solarmon.errors import StorageError, TelemetryError
from solarmon.services.bus import EventBus
from solarmon.services.settings_store import seed_defaults

logger = logging.getLogger(__name__)


def log_config_summary(settings: ServiceSettings) -> None:
    """Log a config summary at startup, excluding secrets."""
    logger.info(
        "Service starting with config: database=%s, cache=%s, "
        "auto_register_devices=%s, auto_register_organization=%s, "
        "max_readings_per_request=%s, max_request_bytes=%s, "
        "default_query_limit=%s, bus_queue_size=%s",
        settings.database_url.split("://", 1)[0],
        "enabled" if settings.redis_url else "disabled",
        settings.auto_register_devices,
        settings.auto_register_organization,
        settings.max_readings_per_request,
        settings.max_request_bytes,
        settings.default_query_limit,
        settings.bus_queue_size,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan.

    Startup:
        - Loads and validates ServiceSettings.
        - Parses API_TOKENS into a BearerAuth.
        - Initialises the database engine, optionally creates the schema,
          and seeds default settings.
        - Creates the live EventBus and the latest-value cache.

    Shutdown:
        - Closes every live subscriber and disposes the engine.
    """
    settings = ServiceSettings()
    app.state.config = settings
    log_config_summary(settings)

    token_map = parse_api_tokens(settings.api_tokens)
    if not token_map:
        raise RuntimeError(
            "API_TOKENS parsed but contains no valid "
            "token:organization_id:role entries"
        )
    app.state.auth = BearerAuth(token_map)
    logger.info("Parsed %d API token(s) from API_TOKENS", len(token_map))

    db_session.init_engine(settings.database_url)
    if settings.auto_create_schema:
        await db_session.create_schema()
        logger.info("Database schema created")
    async with db_session.async_session_factory() as db:
        await seed_defaults(db)

    app.state.bus = EventBus(settings.bus_queue_size)
    app.state.cache = LatestCache(settings.redis_url, settings.cache_ttl_s)
    app.state.started_at = time.monotonic()

    logger.info("Solar telemetry API ready")
    yield
    logger.info("Solar telemetry API shutting down")
    app.state.bus.close()
    await db_session.dispose_engine()


app = FastAPI(
    title="Solar Telemetry API",
    description="Multi-tenant ingestion, decoding and live distribution "
    "of solar sensor telemetry.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(TelemetryError)
async def telemetry_error_handler(
    request: Request, exc: TelemetryError
) -> JSONResponse:
    """Translate a domain error into its HTTP status and structured body."""
    if exc.status_code >= 500:
        logger.error(
            "%s on %s %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.message,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Report database failures outside the service layer as StorageError."""
    logger.error(
        "Database error on %s %s", request.method, request.url.path, exc_info=exc
    )
    error = StorageError("The database is unavailable.")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=CorsSettings().cors_origin_list,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(health_router)
app.include_router(ingest_router)
app.include_router(devices_router)
app.include_router(sensors_router)
app.include_router(data_router)
app.include_router(settings_router)
app.include_router(admin_router)
app.include_router(live_router)


@app.get("/")
async def root() -> dict:
    """Root health check endpoint.

    Returns:
        dict: JSON object with application status.
    """
    return {"status": "ok"}
