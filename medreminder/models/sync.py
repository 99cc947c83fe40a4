"""Pydantic request/response models for the sync and device endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import Field

from medreminder.models.base import MedReminderBase
from medreminder.sync.types import (
    EntityType,
    OperationKind,
    Platform,
    Resolution,
    SyncOperation,
    utc_now,
)


# ---------- Operations ----------

class OperationBase(MedReminderBase):
    entity_type: EntityType
    entity_id: str = Field(min_length=1, max_length=255)
    operation: OperationKind
    data: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime | None = None  # defaults to server receive time


class OperationPush(OperationBase):
    device_id: str = Field(min_length=1, max_length=255)


class LocalOperation(OperationBase):
    version: int = Field(default=0, ge=0)  # device's last-known entity version


class OperationRead(MedReminderBase):
    id: str
    user_id: str
    device_id: str
    entity_type: EntityType
    entity_id: str
    operation: OperationKind
    data: dict[str, Any]
    timestamp: datetime
    version: int
    synced: bool


def to_sync_operation(
    user_id: str, device_id: str, body: OperationBase, version: int = 0
) -> SyncOperation:
    return SyncOperation(
        user_id=user_id,
        device_id=device_id,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
        operation=body.operation,
        data=dict(body.data),
        timestamp=body.timestamp or utc_now(),
        version=version,
    )


class AckRequest(MedReminderBase):
    operation_ids: list[str] = Field(min_length=1, max_length=1000)


class AckResponse(MedReminderBase):
    marked: int


class ClearQueueResponse(MedReminderBase):
    removed: int


# ---------- Conflicts ----------

class ConflictRead(MedReminderBase):
    id: str
    entity_type: EntityType
    entity_id: str
    local: OperationRead
    server: OperationRead
    detected_at: datetime
    resolved_at: datetime | None = None
    resolution: Resolution | None = None


class ResolveRequest(MedReminderBase):
    resolution: Resolution
    merged_data: dict[str, Any] | None = None


# ---------- Devices ----------

class DeviceRegister(MedReminderBase):
    device_id: str = Field(min_length=1, max_length=255)
    platform: Platform
    app_version: str = Field(min_length=1, max_length=50)
    push_token: str | None = None


class DeviceRead(DeviceRegister):
    user_id: str
    last_sync_at: datetime | None = None


# ---------- Status / full sync ----------

class SyncStatusRead(MedReminderBase):
    user_id: str
    device_id: str
    last_sync_at: datetime
    pending_operations: int
    conflicts: int
    is_online: bool


class FullSyncRequest(MedReminderBase):
    device_id: str = Field(min_length=1, max_length=255)
    local_operations: list[LocalOperation] = Field(default_factory=list)


class FullSyncResponse(MedReminderBase):
    applied: list[OperationRead]
    conflicts: list[ConflictRead]
    status: SyncStatusRead
