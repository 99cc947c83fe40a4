"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request

from medreminder.sync.orchestrator import SyncOrchestrator


@dataclass(frozen=True)
class UserContext:
    """Identity of the caller.

    Authentication happens upstream; the gateway forwards the resolved user
    id in the ``X-User-Id`` header.
    """

    user_id: str


async def get_current_user(
    x_user_id: Annotated[str | None, Header()] = None,
) -> UserContext:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return UserContext(user_id=x_user_id)


def get_sync(request: Request) -> SyncOrchestrator:
    """Return the orchestrator created by the application lifespan."""
    sync: SyncOrchestrator | None = getattr(request.app.state, "sync", None)
    if sync is None:
        raise HTTPException(status_code=503, detail="Sync service not initialized")
    return sync


# Annotated shortcuts for route signatures
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
Sync = Annotated[SyncOrchestrator, Depends(get_sync)]
