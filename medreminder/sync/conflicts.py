"""Conflict detection and resolution.

Detection is a version-number comparison, not a causal history: an incoming
operation conflicts when the client's version is not ahead of the server's
AND the stored operation at the server's current version came from a
different device.  A device replaying its own writes is never flagged.

Resolution is chosen by the caller:

    local:  the held-back local operation is appended to the user's log
            and its version is written to the version table.
    server: nothing to do; the server's operation already stands.
    merged: a new operation carrying caller-supplied data is created at
            ``max(local.version, server.version) + 1``, applied to the
            version table and appended to the user's log.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Iterable

from medreminder.sync.errors import ConflictAlreadyResolved, SyncValidationError
from medreminder.sync.operation_log import OperationLog
from medreminder.sync.storage import ConflictStore
from medreminder.sync.types import (
    Resolution,
    SyncConflict,
    SyncOperation,
    new_operation_id,
    utc_now,
)
from medreminder.sync.validation import (
    MergeValidatorRegistry,
    coerce_resolution,
    validate_operation,
)

logger = logging.getLogger("medreminder.sync.conflicts")


class ConflictDetector:
    """Flag incoming operations that collide with another device's write."""

    def __init__(self, log: OperationLog, conflicts: ConflictStore) -> None:
        self._log = log
        self._conflicts = conflicts

    def detect_conflicts(
        self, user_id: str, incoming_ops: Iterable[SyncOperation]
    ) -> list[SyncConflict]:
        """Compare a batch of incoming operations against the server state.

        Newly detected conflicts are appended to the user's conflict list.

        Args:
            user_id:      Owner whose stored operations are searched.
            incoming_ops: Operations as sent by a device, carrying the
                          device's last-known version for each entity.

        Returns:
            The conflicts detected in this call only.
        """
        detected: list[SyncConflict] = []

        for incoming in incoming_ops:
            validate_operation(incoming)
            server_version = self._log.current_version(incoming.entity_type, incoming.entity_id)
            if incoming.version > server_version:
                continue

            server_op = self._log.find_at_version(
                user_id, incoming.entity_type, incoming.entity_id, server_version
            )
            if server_op is None or server_op.device_id == incoming.device_id:
                continue

            conflict = SyncConflict(
                entity_type=incoming.entity_type,
                entity_id=incoming.entity_id,
                local=incoming,
                server=server_op,
            )
            detected.append(conflict)
            logger.warning(
                "Conflict %s on %s: device %s sent v%d, server at v%d from device %s",
                conflict.id,
                incoming.entity_key,
                incoming.device_id,
                incoming.version,
                server_version,
                server_op.device_id,
            )

        if detected:
            self._conflicts.extend(user_id, detected)
        return detected


class ConflictResolver:
    """Settle detected conflicts.

    Args:
        log:        Operation log whose version table the resolution writes to.
        conflicts:  Conflict store shared with the detector.
        validators: Merge validators consulted for ``merged`` resolutions.
    """

    def __init__(
        self,
        log: OperationLog,
        conflicts: ConflictStore,
        validators: MergeValidatorRegistry | None = None,
    ) -> None:
        self._log = log
        self._conflicts = conflicts
        self._validators = validators or MergeValidatorRegistry()

    @property
    def validators(self) -> MergeValidatorRegistry:
        return self._validators

    def resolve_conflict(
        self,
        conflict_id: str,
        resolution: Resolution | str,
        merged_data: dict[str, Any] | None = None,
    ) -> SyncConflict | None:
        """Apply a resolution to a conflict.

        Args:
            conflict_id: Conflict to resolve (searched across all users).
            resolution:  local / server / merged.
            merged_data: Payload for a ``merged`` resolution.

        Returns:
            The updated conflict, or None if no conflict has that id.

        Raises:
            SyncValidationError:     Unknown resolution, or invalid merged data.
            ConflictAlreadyResolved: The conflict was resolved before.
        """
        resolution = coerce_resolution(resolution)

        found = self._conflicts.find(conflict_id)
        if found is None:
            logger.debug("Resolve: conflict %s not found", conflict_id)
            return None
        user_id, conflict = found

        if conflict.is_resolved:
            raise ConflictAlreadyResolved(conflict_id)

        if resolution is Resolution.MERGED:
            if merged_data is None:
                raise SyncValidationError("merged_data is required for a merged resolution")
            self._validators.validate(conflict.entity_type, merged_data)

        if resolution is Resolution.LOCAL:
            winner = replace(
                conflict.local, id=new_operation_id(), timestamp=utc_now(), synced=False
            )
            self._log.apply(winner)
            self._log.record(winner)
        elif resolution is Resolution.MERGED:
            merged = replace(
                conflict.local,
                id=new_operation_id(),
                data=dict(merged_data),
                version=max(conflict.local.version, conflict.server.version) + 1,
                timestamp=utc_now(),
                synced=False,
            )
            self._log.apply(merged)
            self._log.record(merged)
        # Resolution.SERVER: the server's operation already stands

        conflict.resolved_at = utc_now()
        conflict.resolution = resolution
        self._conflicts.update(user_id, conflict)
        logger.info("Resolved conflict %s with %s", conflict_id, resolution.value)
        return conflict

    def get_unresolved_conflicts(self, user_id: str) -> list[SyncConflict]:
        return [c for c in self._conflicts.list_for_user(user_id) if not c.is_resolved]

    def get_conflict(self, conflict_id: str) -> SyncConflict | None:
        found = self._conflicts.find(conflict_id)
        return found[1] if found else None

