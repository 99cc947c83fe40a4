"""Device registration endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from medreminder.dependencies import CurrentUser, Sync
from medreminder.models.sync import DeviceRead, DeviceRegister
from medreminder.sync.types import DeviceInfo

router = APIRouter(prefix="/devices", tags=["devices"])


@router.get("", response_model=list[DeviceRead])
async def list_devices(user: CurrentUser, sync: Sync) -> Any:
    return [DeviceRead.model_validate(d) for d in sync.devices.get_user_devices(user.user_id)]


@router.post("/register", response_model=DeviceRead)
async def register_device(user: CurrentUser, sync: Sync, body: DeviceRegister) -> Any:
    stored = sync.devices.register_device(
        DeviceInfo(
            device_id=body.device_id,
            user_id=user.user_id,
            platform=body.platform,
            app_version=body.app_version,
            push_token=body.push_token,
        )
    )
    return DeviceRead.model_validate(stored)


@router.delete("/{device_id}", status_code=204)
async def unregister_device(device_id: str, user: CurrentUser, sync: Sync) -> None:
    if not sync.devices.unregister_device(user.user_id, device_id):
        raise HTTPException(status_code=404, detail="Device not found")
