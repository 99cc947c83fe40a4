"""Health check endpoint — public, no identity header required."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Request

from medreminder.config import get_settings

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up."""
    settings = get_settings()
    sync = getattr(request.app.state, "sync", None)
    return {
        "status": "healthy" if sync is not None else "starting",
        "version": settings.app_version,
        "environment": settings.environment,
        "sync_config_version": sync.config.version if sync is not None else None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
