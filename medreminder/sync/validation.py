"""Boundary validation for incoming sync data.

Every value that enters the core from a device is coerced here: string
enums become ``EntityType`` / ``OperationKind`` / ``Platform`` /
``Resolution`` members and anything outside the fixed sets is rejected with
a descriptive ``SyncValidationError``.

Merged payloads are checked by a pluggable ``MergeValidator`` per entity
type.  No schema is assumed for merged data: the default validators only
enforce the ``required_fields`` listed in ``sync_config.yaml``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, TypeVar

from medreminder.sync.errors import SyncValidationError
from medreminder.sync.types import (
    EntityType,
    OperationKind,
    Platform,
    Resolution,
    SyncOperation,
)

logger = logging.getLogger("medreminder.sync.validation")

E = TypeVar("E", bound=Enum)

# Raises SyncValidationError if ``data`` is not acceptable for the entity type
MergeValidator = Callable[[EntityType, dict[str, Any]], None]


def coerce_enum(enum_cls: type[E], value: Any, field_name: str) -> E:
    """Return ``value`` as a member of ``enum_cls``.

    Raises:
        SyncValidationError: If the value is not one of the enum's values.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise SyncValidationError(
            f"Invalid {field_name} {value!r}; expected one of: {allowed}"
        ) from None


def validate_operation(op: SyncOperation) -> SyncOperation:
    """Normalize enum fields of an operation and check required identifiers.

    The operation is modified in place and returned.
    """
    if not op.user_id:
        raise SyncValidationError("Operation is missing user_id")
    if not op.device_id:
        raise SyncValidationError("Operation is missing device_id")
    if not op.entity_id:
        raise SyncValidationError("Operation is missing entity_id")
    if op.version < 0:
        raise SyncValidationError(f"Operation version must be >= 0, got {op.version}")
    if not isinstance(op.data, dict):
        raise SyncValidationError("Operation data must be a mapping")

    op.entity_type = coerce_enum(EntityType, op.entity_type, "entity_type")
    op.operation = coerce_enum(OperationKind, op.operation, "operation")
    op.timestamp = as_utc(op.timestamp)
    return op


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def coerce_platform(value: Any) -> Platform:
    return coerce_enum(Platform, value, "platform")


def coerce_resolution(value: Any) -> Resolution:
    return coerce_enum(Resolution, value, "resolution")


def required_fields_validator(required_fields: list[str]) -> MergeValidator:
    """Build a validator that checks merged data carries ``required_fields``."""

    def _validate(entity_type: EntityType, data: dict[str, Any]) -> None:
        missing = [f for f in required_fields if f not in data]
        if missing:
            raise SyncValidationError(
                f"Merged {entity_type.value} data is missing required fields: "
                f"{', '.join(missing)}"
            )

    return _validate


class MergeValidatorRegistry:
    """Per-entity-type merge validators.

    Usage::

        validators = MergeValidatorRegistry()
        validators.register(EntityType.MEDICATION, check_medication_shape)
        validators.validate(EntityType.MEDICATION, merged_data)
    """

    def __init__(self) -> None:
        self._validators: dict[EntityType, list[MergeValidator]] = {}

    def register(self, entity_type: EntityType, validator: MergeValidator) -> None:
        self._validators.setdefault(entity_type, []).append(validator)
        logger.debug("Registered merge validator for %s", entity_type.value)

    def validate(self, entity_type: EntityType, data: Any) -> None:
        """Run every validator registered for ``entity_type``.

        Raises:
            SyncValidationError: If the data is not a non-empty mapping or a
                registered validator rejects it.
        """
        if not isinstance(data, dict) or not data:
            raise SyncValidationError("Merged data must be a non-empty mapping")
        for validator in self._validators.get(entity_type, []):
            validator(entity_type, data)

    @classmethod
    def from_required_fields(
        cls, required: dict[EntityType, list[str]]
    ) -> MergeValidatorRegistry:
        registry = cls()
        for entity_type, fields in required.items():
            if fields:
                registry.register(entity_type, required_fields_validator(fields))
        return registry
