"""Load and validate the sync policy configuration.

The policy lives in ``sync_config.yaml`` alongside this module.  It is
loaded once and cached; call ``reload_sync_config()`` to re-read it from
disk without restarting the process.

Usage::

    from medreminder.sync.config_loader import get_sync_config

    config = get_sync_config()
    config.max_batch_operations           # 100
    config.required_fields("medication")  # []
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from medreminder.sync.types import EntityType

logger = logging.getLogger("medreminder.sync.config")

_CONFIG_PATH = Path(__file__).parent / "sync_config.yaml"


@dataclass
class SyncConfig:
    """Validated, in-memory form of sync_config.yaml.

    Attributes:
        version:               Config schema version string.
        max_batch_operations:  Upper bound on operations in one full sync.
        full_sync_per_minute:  Per-user full sync requests allowed per minute.
        merge_required_fields: entity type -> fields a merged payload must have.
    """

    version: str
    max_batch_operations: int
    full_sync_per_minute: int
    merge_required_fields: dict[EntityType, list[str]]
    _raw: dict = field(default_factory=dict, repr=False)

    def required_fields(self, entity_type: EntityType | str) -> list[str]:
        return self.merge_required_fields.get(EntityType(entity_type), [])


class ConfigValidationError(ValueError):
    """Raised when sync_config.yaml fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError:     If the file does not exist.
        ConfigValidationError: If the YAML is malformed or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Sync config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _positive_int(value: Any, name: str, errors: list[str]) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        errors.append(f"{name} must be an integer, got {value!r}")
        return 0
    if number < 1:
        errors.append(f"{name} must be >= 1, got {number}")
    return number


def _validate_and_build(raw: dict) -> SyncConfig:
    """Validate the raw YAML dict and construct a SyncConfig.

    All problems are collected and reported together.

    Raises:
        ConfigValidationError: If any value is missing or invalid.
    """
    errors: list[str] = []

    version = str(raw.get("version", "1.0"))

    batch_raw = raw.get("batch") or {}
    max_ops = _positive_int(
        batch_raw.get("max_operations", 100), "batch.max_operations", errors
    )

    limits_raw = raw.get("rate_limits") or {}
    full_sync_rate = _positive_int(
        limits_raw.get("full_sync_per_minute", 20),
        "rate_limits.full_sync_per_minute",
        errors,
    )

    # ── Merge validation ──
    merge_required: dict[EntityType, list[str]] = {}
    merge_raw = raw.get("merge_validation") or {}
    if not isinstance(merge_raw, dict):
        errors.append("merge_validation must be a mapping of entity type -> rules")
        merge_raw = {}
    for type_name, rules in merge_raw.items():
        try:
            entity_type = EntityType(type_name)
        except ValueError:
            errors.append(f"merge_validation.{type_name}: unknown entity type")
            continue
        fields = (rules or {}).get("required_fields", []) if isinstance(rules, dict) else None
        if not isinstance(fields, list) or not all(isinstance(f, str) for f in fields):
            errors.append(
                f"merge_validation.{type_name}.required_fields must be a list of strings"
            )
            continue
        merge_required[entity_type] = fields

    if errors:
        raise ConfigValidationError(
            f"sync_config.yaml has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return SyncConfig(
        version=version,
        max_batch_operations=max_ops,
        full_sync_per_minute=full_sync_rate,
        merge_required_fields=merge_required,
        _raw=raw,
    )


def load_sync_config(path: Path | None = None) -> SyncConfig:
    """Load and validate the sync config from disk.

    Args:
        path: Override path to YAML. Uses the bundled sync_config.yaml by default.
    """
    target = path or _CONFIG_PATH
    config = _validate_and_build(_load_yaml(target))
    logger.info("Loaded sync config v%s from %s", config.version, target)
    return config


# ---------------------------------------------------------------------------
# Process-wide cache with reload support
# ---------------------------------------------------------------------------

_config: SyncConfig | None = None
_config_lock = threading.Lock()


def get_sync_config(path: Path | None = None) -> SyncConfig:
    """Return the cached SyncConfig, loading it on first call.

    ``path`` is only consulted on the first load.
    """
    global _config
    if _config is None:
        with _config_lock:
            if _config is None:  # double-checked locking
                _config = load_sync_config(path)
    return _config


def reload_sync_config(path: Path | None = None) -> SyncConfig:
    """Re-read the sync config and replace the cached one.

    If validation fails the old config is retained and the error re-raised.
    """
    global _config
    new_config = load_sync_config(path)
    with _config_lock:
        old_version = _config.version if _config else "none"
        _config = new_config
    logger.info("Reloaded sync config: %s → %s", old_version, new_config.version)
    return new_config
