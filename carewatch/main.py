"""
CareWatch — FastAPI Application.

Run: uvicorn carewatch.main:app --host 0.0.0.0 --port 8000

  - POST /api/v1/events   ← activity-recognition producer
  - /api/v1/alerts/*      ← caregiver actions, delivery receipts, sweep
  - POST /api/v1/sos      ← manual SOS
  - /api/v1/contacts/*    ← care network
  - GET  /health, /ready
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text as sa_text

from carewatch import __version__
from carewatch.alerting.sweeper import AlertSweeper
from carewatch.api.deps import get_services, set_services
from carewatch.api.routers.alerts import router as alerts_router
from carewatch.api.routers.contacts import router as contacts_router
from carewatch.api.routers.events import router as events_router
from carewatch.api.routers.sos import router as sos_router
from carewatch.config import settings
from carewatch.db.engine import close_db, get_engine, init_db
from carewatch.errors import register_exception_handlers
from carewatch.middleware.error_handler import ErrorHandlerMiddleware
from carewatch.middleware.request_context import RequestContextMiddleware
from carewatch.services.redis_store import close_redis, get_redis

logger = structlog.get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 15.0


def configure_logging() -> None:
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info("carewatch_starting", version=__version__, environment=settings.environment)
    if settings.storage_backend.lower() == "sql":
        await init_db()
    services = get_services()

    sweeper = None
    if settings.sweep_enabled:
        sweeper = AlertSweeper(services.controller)
        sweeper.start()

    yield

    if sweeper is not None:
        sweeper.stop()
    await services.dispatcher.tasks.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await services.senders.close()
    set_services(None)
    await close_redis()
    await close_db()
    logger.info("carewatch_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description=(
            "# CareWatch — Alert Lifecycle & Escalation Engine\n\n"
            "Turns fall and inactivity events into caregiver alerts, "
            "fans them out over email, SMS and push, and escalates "
            "when nobody responds."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness and readiness probes"},
            {"name": "events", "description": "Activity event ingestion"},
            {"name": "alerts", "description": "Alert lifecycle, escalation, sweep"},
            {"name": "sos", "description": "Manual SOS"},
            {"name": "contacts", "description": "Care network and eligibility"},
        ],
    )

    register_exception_handlers(app)

    # Last added = outermost.
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(events_router)
    app.include_router(alerts_router)
    app.include_router(sos_router)
    app.include_router(contacts_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness probe. Does NOT check dependencies."""
        return {"status": "ok", "version": __version__, "service": "carewatch"}

    @app.get("/ready", tags=["health"])
    async def readiness():
        """
        Readiness probe.

        Database is a hard dependency (503 when down); Redis, when it
        backs the cooldown, is soft (degraded).
        """
        checks: dict = {"api": "ok"}
        degraded_services: list[str] = []

        if settings.storage_backend.lower() == "sql":
            try:
                async with get_engine().connect() as conn:
                    await asyncio.wait_for(
                        conn.execute(sa_text("SELECT 1")),
                        timeout=settings.health_check_timeout_seconds,
                    )
                checks["database"] = "ok"
            except Exception as e:
                logger.warning("readiness_database_failed", error=str(e))
                checks["database"] = "unavailable"
        else:
            checks["database"] = "not_used"

        if settings.cooldown_backend.lower() == "redis":
            try:
                client = await get_redis()
                if client is None:
                    raise ConnectionError("redis unreachable")
                await asyncio.wait_for(client.ping(), timeout=2)
                checks["redis"] = "ok"
            except Exception as e:
                logger.warning("readiness_redis_failed", error=str(e))
                checks["redis"] = "unavailable"
                degraded_services.append("redis")

        db_ok = checks["database"] != "unavailable"
        status = "ok" if db_ok and not degraded_services else "degraded" if db_ok else "unavailable"
        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": status,
                "version": __version__,
                "service": "carewatch",
                "environment": settings.environment,
                "checks": checks,
                "degraded_services": degraded_services,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    return app


configure_logging()

# Application instance
app = create_app()
