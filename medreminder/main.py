"""MedReminder sync API — FastAPI application entry point.

Run locally:
    uvicorn medreminder.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from medreminder.config import Settings, get_settings
from medreminder.middleware.rate_limit import RateLimitMiddleware
from medreminder.routers import devices, health, sync
from medreminder.sync.config_loader import get_sync_config
from medreminder.sync.orchestrator import SyncOrchestrator, build_sync_orchestrator

# ---------- Logging ----------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("medreminder")


# ---------- App factory ----------

def create_app(
    settings: Settings | None = None, orchestrator: SyncOrchestrator | None = None
) -> FastAPI:
    """Build the application.

    Args:
        settings:     Override settings (defaults to environment).
        orchestrator: Pre-built sync orchestrator; tests pass an isolated one.
                      When omitted, an in-memory one is built at startup.
    """
    settings = settings or get_settings()
    logging.getLogger("medreminder").setLevel(settings.log_level.upper())

    sync_path = Path(settings.sync_config_path) if settings.sync_config_path else None
    sync_config = orchestrator.config if orchestrator else get_sync_config(sync_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Startup / shutdown hooks."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.app_name,
            settings.app_version,
            settings.environment,
        )
        app.state.sync = orchestrator or build_sync_orchestrator(sync_config)
        yield
        app.state.sync = None
        logger.info("%s shut down", settings.app_name)

    app = FastAPI(
        title="MedReminder Sync API",
        description=(
            "Multi-device synchronization for medications, schedules, adherence "
            "events and settings — operation log, conflict detection and resolution."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware (order matters — outermost first) ----------

    app.add_middleware(
        RateLimitMiddleware,
        settings=settings,
        full_sync_per_minute=sync_config.full_sync_per_minute,
    )

    # CORS — added last so it is outermost and answers preflight before rate limiting
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(devices.router, prefix=v1_prefix)

    return app


app = create_app()
