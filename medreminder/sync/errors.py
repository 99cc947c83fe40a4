"""Exceptions raised by the sync core.

Absence (unknown device, unknown conflict id) is not an error: those
operations return ``None`` / ``False``.  Exceptions are reserved for input
that must be rejected.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for sync core errors."""


class SyncValidationError(SyncError, ValueError):
    """Raised when an operation, device or resolution request is malformed."""


class ConflictAlreadyResolved(SyncError):
    """Raised when resolving a conflict that already carries a resolution."""

    def __init__(self, conflict_id: str) -> None:
        super().__init__(f"Conflict {conflict_id} is already resolved")
        self.conflict_id = conflict_id
