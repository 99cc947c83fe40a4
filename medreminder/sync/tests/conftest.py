"""Shared fixtures for sync core tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from medreminder.sync.config_loader import SyncConfig, load_sync_config
from medreminder.sync.orchestrator import SyncOrchestrator, build_sync_orchestrator
from medreminder.sync.types import (
    DeviceInfo,
    EntityType,
    OperationKind,
    Platform,
    SyncOperation,
)

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"
PHONE = "phone-1"
TABLET = "tablet-1"
T0 = datetime(2026, 2, 23, 8, 0, 0, tzinfo=timezone.utc)


def make_op(
    device_id: str = PHONE,
    entity_id: str = "m1",
    entity_type: EntityType | str = EntityType.MEDICATION,
    operation: OperationKind | str = OperationKind.UPDATE,
    version: int = 0,
    user_id: str = TEST_USER_ID,
    minutes: int = 0,
    data: dict | None = None,
) -> SyncOperation:
    """Build an operation as a device would send it."""
    return SyncOperation(
        user_id=user_id,
        device_id=device_id,
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
        data=data if data is not None else {"dose_mg": 50},
        timestamp=T0 + timedelta(minutes=minutes),
        version=version,
    )


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync_config() -> SyncConfig:
    """Load the bundled sync_config.yaml."""
    return load_sync_config()


@pytest.fixture
def small_batch_config() -> SyncConfig:
    return SyncConfig(
        version="test",
        max_batch_operations=2,
        full_sync_per_minute=20,
        merge_required_fields={},
    )


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sync(sync_config: SyncConfig) -> SyncOrchestrator:
    """An isolated, in-memory orchestrator."""
    return build_sync_orchestrator(sync_config)


@pytest.fixture
def registered(sync: SyncOrchestrator) -> SyncOrchestrator:
    """Orchestrator with a phone and a tablet registered for the test user."""
    sync.devices.register_device(DeviceInfo(PHONE, TEST_USER_ID, Platform.IOS, "2.4.0"))
    sync.devices.register_device(DeviceInfo(TABLET, TEST_USER_ID, Platform.ANDROID, "2.3.1"))
    return sync


@pytest.fixture
def server_at_v3(sync: SyncOrchestrator) -> SyncOrchestrator:
    """medication:m1 pushed three times from the phone (server version 3)."""
    for i in range(3):
        sync.log.push_operation(make_op(PHONE, minutes=i))
    return sync
