"""Storage interfaces for the sync core, with in-memory implementations.

Each component receives its stores through its constructor, so tests build
isolated instances and a deployment can swap in a durable backend (e.g. an
``operations`` table keyed by ``(user_id, id)`` with an index on
``(entity_type, entity_id, version)``).

Version table contract
----------------------
Version assignment is "read current, increment, write".  Any backend that
can see concurrent writers MUST implement ``compare_and_set`` atomically
(a conditional UPDATE, a per-key mutex, ...).  ``OperationLog`` only ever
advances versions through ``compare_and_set`` and retries on failure.
The in-memory implementations below guard every call with a
``threading.Lock``.  That makes each call atomic, not a sequence of calls:
read-modify-write sequences (``list_for_user`` then ``replace_for_user`` /
``save_for_user``) are serialized by the owning ``OperationLog`` or
``DeviceRegistry`` within one process.  A durable backend shared by several
processes needs a transaction around those sequences as well.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Iterator

from medreminder.sync.types import DeviceInfo, SyncConflict, SyncOperation


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------


class VersionTable(ABC):
    """Entity key -> highest accepted version."""

    @abstractmethod
    def get(self, key: str) -> int:
        """Return the current version for ``key`` (0 if never seen)."""

    @abstractmethod
    def set(self, key: str, version: int) -> None:
        """Unconditionally store ``version`` for ``key``."""

    @abstractmethod
    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        """Store ``new`` only if the current version equals ``expected``.

        Returns:
            True if the write happened.
        """

    @abstractmethod
    def snapshot(self) -> dict[str, int]:
        """Return a copy of the whole table."""


class OperationStore(ABC):
    """Per-user append-only lists of sync operations."""

    @abstractmethod
    def append(self, op: SyncOperation) -> None: ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[SyncOperation]:
        """Return the user's operations in insertion order (a copy of the list)."""

    @abstractmethod
    def iter_all(self) -> Iterator[SyncOperation]:
        """Iterate every stored operation across all users."""

    @abstractmethod
    def update(self, op: SyncOperation) -> None:
        """Persist changes to an already-stored operation (matched by id)."""

    @abstractmethod
    def replace_for_user(self, user_id: str, ops: list[SyncOperation]) -> None: ...


class ConflictStore(ABC):
    """Per-user lists of detected conflicts."""

    @abstractmethod
    def extend(self, user_id: str, conflicts: list[SyncConflict]) -> None: ...

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[SyncConflict]: ...

    @abstractmethod
    def update(self, user_id: str, conflict: SyncConflict) -> None:
        """Persist changes to an already-stored conflict (matched by id)."""

    @abstractmethod
    def find(self, conflict_id: str) -> tuple[str, SyncConflict] | None:
        """Locate a conflict by id across all users.

        Returns:
            ``(user_id, conflict)`` or None.
        """


class DeviceStore(ABC):
    """Per-user device lists."""

    @abstractmethod
    def list_for_user(self, user_id: str) -> list[DeviceInfo]: ...

    @abstractmethod
    def save_for_user(self, user_id: str, devices: list[DeviceInfo]) -> None: ...


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------


class InMemoryVersionTable(VersionTable):
    def __init__(self) -> None:
        self._versions: dict[str, int] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> int:
        with self._lock:
            return self._versions.get(key, 0)

    def set(self, key: str, version: int) -> None:
        with self._lock:
            self._versions[key] = version

    def compare_and_set(self, key: str, expected: int, new: int) -> bool:
        with self._lock:
            if self._versions.get(key, 0) != expected:
                return False
            self._versions[key] = new
            return True

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._versions)

    def __len__(self) -> int:
        return len(self._versions)


class InMemoryOperationStore(OperationStore):
    def __init__(self) -> None:
        self._ops: dict[str, list[SyncOperation]] = {}
        self._lock = threading.Lock()

    def append(self, op: SyncOperation) -> None:
        with self._lock:
            self._ops.setdefault(op.user_id, []).append(op)

    def list_for_user(self, user_id: str) -> list[SyncOperation]:
        with self._lock:
            return list(self._ops.get(user_id, []))

    def iter_all(self) -> Iterator[SyncOperation]:
        with self._lock:
            snapshot = [op for ops in self._ops.values() for op in ops]
        return iter(snapshot)

    def update(self, op: SyncOperation) -> None:
        with self._lock:
            ops = self._ops.get(op.user_id, [])
            for idx, stored in enumerate(ops):
                if stored.id == op.id:
                    ops[idx] = op
                    return

    def replace_for_user(self, user_id: str, ops: list[SyncOperation]) -> None:
        with self._lock:
            self._ops[user_id] = list(ops)


class InMemoryConflictStore(ConflictStore):
    def __init__(self) -> None:
        self._conflicts: dict[str, list[SyncConflict]] = {}
        self._lock = threading.Lock()

    def extend(self, user_id: str, conflicts: list[SyncConflict]) -> None:
        with self._lock:
            self._conflicts.setdefault(user_id, []).extend(conflicts)

    def list_for_user(self, user_id: str) -> list[SyncConflict]:
        with self._lock:
            return list(self._conflicts.get(user_id, []))

    def update(self, user_id: str, conflict: SyncConflict) -> None:
        with self._lock:
            conflicts = self._conflicts.get(user_id, [])
            for idx, stored in enumerate(conflicts):
                if stored.id == conflict.id:
                    conflicts[idx] = conflict
                    return

    def find(self, conflict_id: str) -> tuple[str, SyncConflict] | None:
        with self._lock:
            for user_id, conflicts in self._conflicts.items():
                for conflict in conflicts:
                    if conflict.id == conflict_id:
                        return user_id, conflict
        return None


class InMemoryDeviceStore(DeviceStore):
    def __init__(self) -> None:
        self._devices: dict[str, list[DeviceInfo]] = {}
        self._lock = threading.Lock()

    def list_for_user(self, user_id: str) -> list[DeviceInfo]:
        with self._lock:
            return list(self._devices.get(user_id, []))

    def save_for_user(self, user_id: str, devices: list[DeviceInfo]) -> None:
        with self._lock:
            self._devices[user_id] = list(devices)
