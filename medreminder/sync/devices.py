"""Device registry: which devices each user has, and when each last synced.

Updates read the user's device list and save it back whole, so each one
holds the registry's lock for the read and the write.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from datetime import datetime

from medreminder.sync.errors import SyncValidationError
from medreminder.sync.storage import DeviceStore, InMemoryDeviceStore
from medreminder.sync.types import DeviceInfo, utc_now
from medreminder.sync.validation import coerce_platform

logger = logging.getLogger("medreminder.sync.devices")


class DeviceRegistry:
    """Per-user device records, upserted by device id."""

    def __init__(self, store: DeviceStore | None = None) -> None:
        self._store = store or InMemoryDeviceStore()
        self._lock = threading.Lock()

    def register_device(self, info: DeviceInfo) -> DeviceInfo:
        """Insert or update a device record.

        When the device is already registered, the new values are laid over
        the existing record; optional fields left as None keep their stored
        value.

        Args:
            info: Device registration data.

        Returns:
            The record as stored.
        """
        if not info.device_id or not info.user_id:
            raise SyncValidationError("Device registration requires device_id and user_id")
        info = replace(info, platform=coerce_platform(info.platform))

        with self._lock:
            devices = self._store.list_for_user(info.user_id)
            for idx, existing in enumerate(devices):
                if existing.device_id == info.device_id:
                    stored = replace(
                        existing,
                        platform=info.platform,
                        app_version=info.app_version,
                        last_sync_at=info.last_sync_at or existing.last_sync_at,
                        push_token=info.push_token or existing.push_token,
                    )
                    devices[idx] = stored
                    break
            else:
                stored = info
                devices.append(stored)

            self._store.save_for_user(info.user_id, devices)
        logger.info("Registered device %s for user %s", info.device_id, info.user_id)
        return stored

    def unregister_device(self, user_id: str, device_id: str) -> bool:
        """Remove a device. Returns False if it was not registered."""
        with self._lock:
            devices = self._store.list_for_user(user_id)
            remaining = [d for d in devices if d.device_id != device_id]
            if len(remaining) == len(devices):
                logger.debug("Unregister: device %s not found for user %s", device_id, user_id)
                return False

            self._store.save_for_user(user_id, remaining)
        logger.info("Unregistered device %s for user %s", device_id, user_id)
        return True

    def get_user_devices(self, user_id: str) -> list[DeviceInfo]:
        return self._store.list_for_user(user_id)

    def get_device(self, user_id: str, device_id: str) -> DeviceInfo | None:
        for device in self._store.list_for_user(user_id):
            if device.device_id == device_id:
                return device
        return None

    def touch(
        self, user_id: str, device_id: str, when: datetime | None = None
    ) -> DeviceInfo | None:
        """Record a completed sync for a device.

        Returns:
            The updated record, or None if the device is not registered.
        """
        with self._lock:
            devices = self._store.list_for_user(user_id)
            for idx, device in enumerate(devices):
                if device.device_id == device_id:
                    devices[idx] = replace(device, last_sync_at=when or utc_now())
                    self._store.save_for_user(user_id, devices)
                    return devices[idx]
        return None
