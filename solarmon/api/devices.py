"""
Device management and latest-value endpoints.

Users manage devices of their own organization; administrators may create
devices in any organization. Every change is announced to live subscribers
of the owning tenant as a ``device_updated`` event.

CHANGELOG:
- 2026-10-17: Add the field-device heartbeat; resolve names before ids
- 2026-10-17: Accept a device name or id on the latest-value endpoint
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter, HTTPException, Response
from pydantic import BaseModel

from solarmon.api.deps import Bus, Cache, CurrentPrincipal, DbSession, Writer
from solarmon.errors import NotFoundError, ValidationError
from solarmon.services import devices as device_service
from solarmon.services.queries import latest_by_device

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/devices", tags=["devices"])


class DeviceCreate(BaseModel):
    name: str
    organization_id: int | None = None
    ip_address: str | None = None
    description: str | None = None


class DeviceUpdate(BaseModel):
    ip_address: str | None = None
    description: str | None = None
    is_active: bool | None = None


class DeviceHeartbeat(BaseModel):
    name: str
    ip_address: str | None = None
    description: str | None = None


@router.get("")
async def list_devices(db: DbSession, principal: CurrentPrincipal) -> list[dict]:
    """List the caller's devices (all devices for administrators)."""
    return await device_service.list_devices(db, principal.scope)


@router.post("", status_code=201)
async def create_device(
    body: DeviceCreate, db: DbSession, principal: Writer, bus: Bus
) -> dict:
    """Register a device.

    Non-administrators always create in their own organization.

    Raises:
        HTTPException: 403 if a user targets another organization.
        ValidationError: If an administrator omits organization_id.
    """
    if principal.is_admin:
        if body.organization_id is None:
            raise ValidationError(
                "organization_id is required.", field="organization_id"
            )
        organization_id = body.organization_id
    else:
        if body.organization_id not in (None, principal.organization_id):
            raise HTTPException(
                status_code=403,
                detail="Cannot create devices for another organization.",
            )
        organization_id = principal.organization_id

    device = await device_service.create_device(
        db,
        body.name,
        organization_id,
        ip_address=body.ip_address,
        description=body.description,
    )
    payload = device_service.device_to_dict(device)
    bus.publish(
        device_service.device_updated_event(
            "created", organization_id, {"device": payload}
        )
    )
    return payload


@router.post("/register")
async def register_heartbeat(body: DeviceHeartbeat, db: DbSession, bus: Bus) -> dict:
    """Let a field device refresh its address and description by name.

    Open like the ingestion endpoints: field devices are not principals.
    Only devices registered through the management API are accepted.

    Raises:
        ValidationError: If the name is empty.
        NotFoundError: If no device has that name.
    """
    device = await device_service.record_heartbeat(
        db, body.name, ip_address=body.ip_address, description=body.description
    )
    payload = device_service.device_to_dict(device)
    bus.publish(
        device_service.device_updated_event(
            "heartbeat", device.organization_id, {"device": payload}
        )
    )
    return payload


@router.patch("/{device_id}")
async def update_device(
    device_id: int, body: DeviceUpdate, db: DbSession, principal: Writer, bus: Bus
) -> dict:
    device = await device_service.update_device(
        db,
        device_id,
        principal.scope,
        ip_address=body.ip_address,
        description=body.description,
        is_active=body.is_active,
    )
    payload = device_service.device_to_dict(device)
    bus.publish(
        device_service.device_updated_event(
            "updated", device.organization_id, {"device": payload}
        )
    )
    return payload


@router.delete("/{device_id}", status_code=204)
async def delete_device(
    device_id: int, db: DbSession, principal: Writer, bus: Bus, cache: Cache
) -> Response:
    """Delete a device with all its sensors, configurations and samples."""
    device = await device_service.delete_device(db, device_id, principal.scope)
    await cache.invalidate(device_id)
    bus.publish(
        device_service.device_updated_event(
            "deleted",
            device.organization_id,
            {"device": {"id": device_id, "name": device.name}},
        )
    )
    return Response(status_code=204)


@router.get("/{ref}/latest")
async def latest(
    ref: str, db: DbSession, principal: CurrentPrincipal, cache: Cache
) -> list[dict]:
    """Return the newest sample of every active sensor of a device.

    ``ref`` is a device name, or a device id when no device has that name.
    Unknown and out-of-scope devices both yield an empty list.
    """
    try:
        device = await device_service.resolve_device_ref(db, ref, principal.scope)
    except NotFoundError:
        return []
    return await latest_by_device(db, device.id, principal.scope, cache)
