"""Multi-device synchronization core for medreminder.

Modules:
    types          — Sync operations, conflicts, devices, status records
    storage        — Store interfaces and in-memory implementations
    devices        — Device registry (upsert / unregister / last sync)
    operation_log  — Append-only operation log and entity version table
    conflicts      — Version-based conflict detection and resolution
    orchestrator   — Full sync cycle per device
    config_loader  — sync_config.yaml loading and validation
"""

from medreminder.sync.orchestrator import SyncOrchestrator, build_sync_orchestrator

__all__ = ["SyncOrchestrator", "build_sync_orchestrator"]
