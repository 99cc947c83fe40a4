"""Full sync cycle for one device: detect, apply, report.

``SyncOrchestrator`` owns the four sync components and is what the HTTP
layer talks to.  One ``perform_full_sync`` call:

1. Validates the batch (size, ownership, enum values)
2. Detects conflicts against the current server versions
3. Holds back every operation whose entity key is in a new conflict
4. Pushes the remaining operations (each gets the next entity version)
5. Stamps the device's ``last_sync_at``
6. Returns the applied operations, the new conflicts and the device status

Steps 2-4 run under one lock so that no push can slip in between detection
and application within this process.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from medreminder.sync.config_loader import SyncConfig, get_sync_config
from medreminder.sync.conflicts import ConflictDetector, ConflictResolver
from medreminder.sync.devices import DeviceRegistry
from medreminder.sync.errors import SyncValidationError
from medreminder.sync.operation_log import OperationLog
from medreminder.sync.storage import (
    ConflictStore,
    DeviceStore,
    InMemoryConflictStore,
    OperationStore,
    VersionTable,
)
from medreminder.sync.types import (
    EPOCH,
    FullSyncResult,
    Resolution,
    SyncConflict,
    SyncOperation,
    SyncStatus,
)
from medreminder.sync.validation import MergeValidatorRegistry

logger = logging.getLogger("medreminder.sync.orchestrator")

# (user_id, device_id) -> whether the device is currently reachable
ConnectivityProbe = Callable[[str, str], bool]


def always_online(user_id: str, device_id: str) -> bool:
    return True


class SyncOrchestrator:
    """Compose device registry, operation log and conflict handling.

    Usage::

        sync = build_sync_orchestrator()
        sync.devices.register_device(DeviceInfo("phone", "u1", Platform.IOS, "2.4.0"))
        result = sync.perform_full_sync("u1", "phone", local_ops)
        result.status.pending_operations
    """

    def __init__(
        self,
        log: OperationLog,
        devices: DeviceRegistry,
        detector: ConflictDetector,
        resolver: ConflictResolver,
        config: SyncConfig | None = None,
        connectivity: ConnectivityProbe | None = None,
    ) -> None:
        self.log = log
        self.devices = devices
        self.detector = detector
        self.resolver = resolver
        self._config = config or get_sync_config()
        self._connectivity = connectivity or always_online
        self._lock = threading.RLock()

    @property
    def config(self) -> SyncConfig:
        return self._config

    def push_operation(self, op: SyncOperation) -> SyncOperation:
        with self._lock:
            return self.log.push_operation(op)

    def resolve_conflict(
        self,
        conflict_id: str,
        resolution: Resolution | str,
        merged_data: dict[str, Any] | None = None,
    ) -> SyncConflict | None:
        with self._lock:
            return self.resolver.resolve_conflict(conflict_id, resolution, merged_data)

    def perform_full_sync(
        self, user_id: str, device_id: str, local_operations: list[SyncOperation]
    ) -> FullSyncResult:
        """Run one detect + apply + status cycle for a device.

        Args:
            user_id:          Owning user.
            device_id:        The syncing device.
            local_operations: Changes queued on the device, each carrying the
                              device's last-known version of its entity.

        Returns:
            FullSyncResult with the stored operations, the new conflicts and
            the device's status afterwards.

        Raises:
            SyncValidationError: Oversized batch, an operation belonging to a
                different user or device, or a malformed operation.
        """
        limit = self._config.max_batch_operations
        if len(local_operations) > limit:
            raise SyncValidationError(f"Maximum {limit} operations per batch")

        for op in local_operations:
            if op.user_id != user_id or op.device_id != device_id:
                raise SyncValidationError(
                    f"Operation for {op.entity_key} does not belong "
                    f"to user {user_id} / device {device_id}"
                )

        with self._lock:
            conflicts = self.detector.detect_conflicts(user_id, local_operations)
            held_back = {c.entity_key for c in conflicts}
            applied = [
                self.log.push_operation(op)
                for op in local_operations
                if op.entity_key not in held_back
            ]

        if self.devices.touch(user_id, device_id) is None:
            logger.warning(
                "Full sync from unregistered device %s (user %s)", device_id, user_id
            )

        status = self.get_sync_status(user_id, device_id)
        logger.info(
            "Full sync completed for user %s, device %s: %d applied, %d conflicts",
            user_id, device_id, len(applied), len(conflicts),
        )
        return FullSyncResult(applied=applied, conflicts=conflicts, status=status)

    def get_sync_status(self, user_id: str, device_id: str) -> SyncStatus:
        device = self.devices.get_device(user_id, device_id)
        return SyncStatus(
            user_id=user_id,
            device_id=device_id,
            last_sync_at=(device.last_sync_at if device and device.last_sync_at else EPOCH),
            pending_operations=len(self.log.get_offline_queue(user_id, device_id)),
            conflicts=len(self.resolver.get_unresolved_conflicts(user_id)),
            is_online=self._connectivity(user_id, device_id),
        )


def build_sync_orchestrator(
    config: SyncConfig | None = None,
    *,
    operations: OperationStore | None = None,
    versions: VersionTable | None = None,
    conflicts: ConflictStore | None = None,
    devices: DeviceStore | None = None,
    validators: MergeValidatorRegistry | None = None,
    connectivity: ConnectivityProbe | None = None,
) -> SyncOrchestrator:
    """Wire up a SyncOrchestrator, defaulting every store to in-memory.

    Merge validators default to the ``required_fields`` rules in the config.
    """
    config = config or get_sync_config()
    log = OperationLog(store=operations, versions=versions)
    conflict_store = conflicts or InMemoryConflictStore()
    if validators is None:
        validators = MergeValidatorRegistry.from_required_fields(config.merge_required_fields)

    return SyncOrchestrator(
        log=log,
        devices=DeviceRegistry(devices),
        detector=ConflictDetector(log, conflict_store),
        resolver=ConflictResolver(log, conflict_store, validators),
        config=config,
        connectivity=connectivity,
    )
