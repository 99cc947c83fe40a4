"""Sync endpoints: push, pull, acknowledge, full sync, status, conflicts, offline queue."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query

from medreminder.dependencies import CurrentUser, Sync
from medreminder.models.sync import (
    AckRequest,
    AckResponse,
    ClearQueueResponse,
    ConflictRead,
    FullSyncRequest,
    FullSyncResponse,
    OperationPush,
    OperationRead,
    ResolveRequest,
    SyncStatusRead,
    to_sync_operation,
)
from medreminder.sync.errors import ConflictAlreadyResolved, SyncValidationError

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("medreminder.routers.sync")


# ---------- Push / pull ----------

@router.post("/push", response_model=OperationRead, status_code=201)
async def push_operation(user: CurrentUser, sync: Sync, body: OperationPush) -> Any:
    op = to_sync_operation(user.user_id, body.device_id, body)
    try:
        stored = sync.push_operation(op)
    except SyncValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return OperationRead.model_validate(stored)


@router.get("/pull", response_model=list[OperationRead])
async def pull_operations(
    user: CurrentUser,
    sync: Sync,
    device_id: str = Query(min_length=1),
    since: datetime | None = Query(default=None),
) -> Any:
    ops = sync.log.pull_operations(user.user_id, device_id, since)
    return [OperationRead.model_validate(op) for op in ops]


@router.post("/ack", response_model=AckResponse)
async def acknowledge(user: CurrentUser, sync: Sync, body: AckRequest) -> Any:
    """Mark pulled operations as propagated. Ids of other users' operations are ignored."""
    return AckResponse(marked=sync.log.mark_synced(body.operation_ids, user.user_id))


# ---------- Full sync ----------

@router.post("/full", response_model=FullSyncResponse)
async def full_sync(user: CurrentUser, sync: Sync, body: FullSyncRequest) -> Any:
    """Detect conflicts in a device's queued changes and apply the rest.

    POST /api/v1/sync/full
    {
        "device_id": "phone-1",
        "local_operations": [
            {"entity_type": "medication", "entity_id": "m1",
             "operation": "update", "data": {...}, "version": 3},
            ...
        ]
    }
    """
    ops = [
        to_sync_operation(user.user_id, body.device_id, local, version=local.version)
        for local in body.local_operations
    ]
    try:
        result = sync.perform_full_sync(user.user_id, body.device_id, ops)
    except SyncValidationError as exc:
        logger.warning("Rejected full sync from %s/%s: %s", user.user_id, body.device_id, exc)
        raise HTTPException(status_code=422, detail=str(exc))

    return FullSyncResponse(
        applied=[OperationRead.model_validate(op) for op in result.applied],
        conflicts=[ConflictRead.model_validate(c) for c in result.conflicts],
        status=SyncStatusRead.model_validate(result.status),
    )


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(
    user: CurrentUser, sync: Sync, device_id: str = Query(min_length=1)
) -> Any:
    return SyncStatusRead.model_validate(sync.get_sync_status(user.user_id, device_id))


# ---------- Conflicts ----------

@router.get("/conflicts", response_model=list[ConflictRead])
async def list_unresolved_conflicts(user: CurrentUser, sync: Sync) -> Any:
    conflicts = sync.resolver.get_unresolved_conflicts(user.user_id)
    return [ConflictRead.model_validate(c) for c in conflicts]


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictRead)
async def resolve_conflict(
    conflict_id: str, user: CurrentUser, sync: Sync, body: ResolveRequest
) -> Any:
    # Conflict ids are global; hide other users' conflicts behind a 404
    existing = sync.resolver.get_conflict(conflict_id)
    if existing is None or existing.local.user_id != user.user_id:
        raise HTTPException(status_code=404, detail="Conflict not found")

    try:
        conflict = sync.resolve_conflict(conflict_id, body.resolution, body.merged_data)
    except ConflictAlreadyResolved as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SyncValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    if conflict is None:
        raise HTTPException(status_code=404, detail="Conflict not found")
    return ConflictRead.model_validate(conflict)


# ---------- Offline queue ----------

@router.get("/offline-queue", response_model=list[OperationRead])
async def offline_queue(
    user: CurrentUser, sync: Sync, device_id: str = Query(min_length=1)
) -> Any:
    ops = sync.log.get_offline_queue(user.user_id, device_id)
    return [OperationRead.model_validate(op) for op in ops]


@router.delete("/offline-queue", response_model=ClearQueueResponse)
async def clear_offline_queue(
    user: CurrentUser, sync: Sync, device_id: str = Query(min_length=1)
) -> Any:
    return ClearQueueResponse(removed=sync.log.clear_offline_queue(user.user_id, device_id))
