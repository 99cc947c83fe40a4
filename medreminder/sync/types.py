"""Canonical data types for the medreminder sync core.

These dataclasses are what the operation log, conflict detector/resolver,
device registry and orchestrator pass between each other.  The HTTP layer
converts them to and from the Pydantic schemas in ``medreminder.models.sync``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# Reported as ``last_sync_at`` for a device that has never completed a sync
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def new_operation_id() -> str:
    return f"sync_{uuid.uuid4().hex}"


def new_conflict_id() -> str:
    return f"conflict_{uuid.uuid4().hex}"


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class EntityType(str, Enum):
    """Kinds of patient data that are synchronized between devices."""

    MEDICATION = "medication"
    SCHEDULE = "schedule"
    ADHERENCE = "adherence"
    SETTINGS = "settings"


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Platform(str, Enum):
    IOS = "ios"
    ANDROID = "android"
    WEB = "web"


class Resolution(str, Enum):
    """How a conflict was settled."""

    LOCAL = "local"
    SERVER = "server"
    MERGED = "merged"


def entity_key(entity_type: EntityType | str, entity_id: str) -> str:
    """Build the version-table key for an entity.

    Args:
        entity_type: Entity type (enum or its string value).
        entity_id:   Client-assigned entity identifier.

    Returns:
        ``"<entity_type>:<entity_id>"``, e.g. ``"medication:m1"``.
    """
    kind = entity_type.value if isinstance(entity_type, EntityType) else entity_type
    return f"{kind}:{entity_id}"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class SyncOperation:
    """One mutation intent submitted by one device.

    Attributes:
        user_id:     Owning user.
        device_id:   Device the change originated on.
        entity_type: Which kind of entity is being changed.
        entity_id:   Identifier of the changed entity.
        operation:   create / update / delete.
        data:        Opaque payload of field name -> value.
        timestamp:   When the change was made (used for ordering only).
        version:     Per-entity-key version.  Assigned by the operation log on
                     push; on incoming batches it is the client's last-known
                     version and is what conflict detection compares.
        id:          Assigned by the operation log on push.
        synced:      True once propagated to the user's other devices.
    """

    user_id: str
    device_id: str
    entity_type: EntityType
    entity_id: str
    operation: OperationKind
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
    version: int = 0
    id: str = field(default_factory=new_operation_id)
    synced: bool = False

    @property
    def entity_key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)


@dataclass
class SyncConflict:
    """Disagreement between an incoming operation and the server's latest one.

    ``local`` is the incoming (held back) operation, ``server`` is the stored
    operation it collided with.
    """

    entity_type: EntityType
    entity_id: str
    local: SyncOperation
    server: SyncOperation
    id: str = field(default_factory=new_conflict_id)
    detected_at: datetime = field(default_factory=utc_now)
    resolved_at: datetime | None = None
    resolution: Resolution | None = None

    @property
    def entity_key(self) -> str:
        return entity_key(self.entity_type, self.entity_id)

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None


@dataclass
class DeviceInfo:
    """Registration record for one device of one user."""

    device_id: str
    user_id: str
    platform: Platform
    app_version: str
    last_sync_at: datetime | None = None
    push_token: str | None = None


@dataclass
class SyncStatus:
    """Point-in-time sync summary for one device."""

    user_id: str
    device_id: str
    last_sync_at: datetime
    pending_operations: int
    conflicts: int
    is_online: bool


@dataclass
class FullSyncResult:
    """Outcome of one ``perform_full_sync`` cycle.

    Attributes:
        applied:   Operations accepted and stored, with their server versions.
        conflicts: Conflicts detected in this batch (not the full history).
        status:    Device status computed after the batch was applied.
    """

    applied: list[SyncOperation]
    conflicts: list[SyncConflict]
    status: SyncStatus
