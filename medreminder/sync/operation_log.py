"""Operation log and entity version table.

Every change a device pushes is appended to the owning user's operation
list and stamped with the next version for its entity key
(``"<entity_type>:<entity_id>"``).  The version table is shared by all
users and devices; it is not scoped per user.

Offline queue: the operations a device has pushed that have not yet been
marked as propagated (``synced``) to the user's other devices.

Writes that read a user's list and store it back (clear, mark synced) hold
the log's lock together with every append, so an in-process push cannot
land between the read and the write.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime

from medreminder.sync.errors import SyncError
from medreminder.sync.storage import (
    InMemoryOperationStore,
    InMemoryVersionTable,
    OperationStore,
    VersionTable,
)
from medreminder.sync.types import EntityType, SyncOperation, entity_key, new_operation_id
from medreminder.sync.validation import as_utc, validate_operation

logger = logging.getLogger("medreminder.sync.log")

# compare_and_set retries before giving up on a contended entity key
MAX_VERSION_RETRIES = 10


class OperationLog:
    """Append-only per-user operation store plus the version table.

    Usage::

        log = OperationLog()
        stored = log.push_operation(op)      # stored.version == previous + 1
        others = log.pull_operations("u1", "phone")
        log.mark_synced([o.id for o in others])
    """

    def __init__(
        self,
        store: OperationStore | None = None,
        versions: VersionTable | None = None,
    ) -> None:
        self._store = store or InMemoryOperationStore()
        self._versions = versions or InMemoryVersionTable()
        self._lock = threading.RLock()

    @property
    def versions(self) -> VersionTable:
        return self._versions

    # ------------------------------------------------------------------
    # Push / pull
    # ------------------------------------------------------------------

    def push_operation(self, op: SyncOperation) -> SyncOperation:
        """Accept a device's change and assign it the next entity version.

        Any ``id``, ``version`` or ``synced`` value on ``op`` is ignored; the
        log assigns all three.

        Args:
            op: The incoming operation.

        Returns:
            The stored operation.

        Raises:
            SyncValidationError: If the operation is malformed.
            SyncError: If the version could not be reserved after retries.
        """
        validate_operation(op)
        key = op.entity_key

        for _ in range(MAX_VERSION_RETRIES):
            current = self._versions.get(key)
            if self._versions.compare_and_set(key, current, current + 1):
                break
            logger.debug("Version contention on %s, retrying", key)
        else:
            raise SyncError(f"Could not reserve a version for {key}")

        stored = replace(op, id=new_operation_id(), version=current + 1, synced=False)
        with self._lock:
            self._store.append(stored)

        logger.info(
            "Pushed sync operation %s for %s (v%d, device=%s)",
            stored.id, key, stored.version, stored.device_id,
        )
        return stored

    def pull_operations(
        self, user_id: str, device_id: str, since: datetime | None = None
    ) -> list[SyncOperation]:
        """Return the user's operations made on other devices.

        Args:
            user_id:   Owning user.
            device_id: The pulling device; its own operations are excluded.
            since:     Only return operations strictly newer than this.

        Returns:
            Operations sorted by timestamp, oldest first.
        """
        ops = [op for op in self._store.list_for_user(user_id) if op.device_id != device_id]
        if since is not None:
            cutoff = as_utc(since)
            ops = [op for op in ops if op.timestamp > cutoff]

        ops.sort(key=lambda op: op.timestamp)
        logger.debug(
            "Pull for %s/%s since=%s → %d operations", user_id, device_id, since, len(ops)
        )
        return ops

    def mark_synced(
        self, operation_ids: list[str] | set[str], user_id: str | None = None
    ) -> int:
        """Flag operations as propagated.

        Already-synced operations are left alone, so repeating a call is
        harmless.

        Args:
            operation_ids: Ids of the operations to flag.
            user_id:       Only touch this user's operations; None searches
                           every user.

        Returns:
            Number of operations that changed from unsynced to synced.
        """
        wanted = set(operation_ids)
        if not wanted:
            return 0

        count = 0
        with self._lock:
            if user_id is None:
                ops = list(self._store.iter_all())
            else:
                ops = self._store.list_for_user(user_id)
            for op in ops:
                if op.id in wanted and not op.synced:
                    op.synced = True
                    self._store.update(op)
                    count += 1

        logger.info("Marked %d of %d operations synced", count, len(wanted))
        return count

    # ------------------------------------------------------------------
    # Offline queue
    # ------------------------------------------------------------------

    def get_offline_queue(self, user_id: str, device_id: str) -> list[SyncOperation]:
        return [
            op
            for op in self._store.list_for_user(user_id)
            if op.device_id == device_id and not op.synced
        ]

    def clear_offline_queue(self, user_id: str, device_id: str) -> int:
        """Drop a device's already-synced operations; unsynced ones are kept.

        Returns:
            Number of operations removed.
        """
        with self._lock:
            ops = self._store.list_for_user(user_id)
            remaining = [op for op in ops if not (op.device_id == device_id and op.synced)]
            removed = len(ops) - len(remaining)
            if removed:
                self._store.replace_for_user(user_id, remaining)
        if removed:
            logger.info("Cleared %d synced operations for %s/%s", removed, user_id, device_id)
        return removed

    # ------------------------------------------------------------------
    # Lookups used by conflict handling
    # ------------------------------------------------------------------

    def list_for_user(self, user_id: str) -> list[SyncOperation]:
        return self._store.list_for_user(user_id)

    def current_version(self, entity_type: EntityType | str, entity_id: str) -> int:
        return self._versions.get(entity_key(entity_type, entity_id))

    def find_at_version(
        self, user_id: str, entity_type: EntityType | str, entity_id: str, version: int
    ) -> SyncOperation | None:
        """Return the user's latest operation for an entity at an exact version.

        A ``local`` resolution can move an entity's version backwards, so a
        version may be stored more than once; the most recent write stands.
        """
        key = entity_key(entity_type, entity_id)
        for op in reversed(self._store.list_for_user(user_id)):
            if op.entity_key == key and op.version == version:
                return op
        return None

    def apply(self, op: SyncOperation) -> None:
        """Write ``op.version`` into the version table for its entity key.

        Used when a conflict resolution settles which version stands; this is
        an unconditional write.
        """
        self._versions.set(op.entity_key, op.version)
        logger.info("Applied operation %s for %s (v%d)", op.id, op.entity_key, op.version)

    def record(self, op: SyncOperation) -> SyncOperation:
        """Append an operation whose version was already decided by the caller."""
        with self._lock:
            self._store.append(op)
        return op
