"""
Sensor catalog endpoints: sensors under a device and their decoding
configurations, plus cross-device listings and the latest sample of one
sensor.

CHANGELOG:
- 2026-10-17: Add sensor and decoding listings, per-sensor latest value
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter, Response
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.api.deps import Bus, Cache, CurrentPrincipal, DbSession, Writer
from solarmon.errors import NotFoundError
from solarmon.services import catalog
from solarmon.services.bus import EventBus
from solarmon.services.devices import device_updated_event, get_device
from solarmon.services.queries import latest_by_sensor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sensors"])


class SensorCreate(BaseModel):
    name: str
    sensor_type: str
    unit: str | None = None


class SensorUpdate(BaseModel):
    name: str | None = None
    sensor_type: str | None = None
    unit: str | None = None
    is_active: bool | None = None


class DecodingIn(BaseModel):
    address: int
    register_kind: str
    encoding: str
    scale: float = 1.0
    offset: float = 0.0


async def _announce(
    db: AsyncSession, bus: EventBus, device_id: int, action: str, data: dict
) -> None:
    device = await get_device(db, device_id, None)
    bus.publish(
        device_updated_event(
            action, device.organization_id, {"device_id": device_id, **data}
        )
    )


# ---------------------------------------------------------------------------
# Sensors
# ---------------------------------------------------------------------------


@router.get("/sensors")
async def list_all_sensors(db: DbSession, principal: CurrentPrincipal) -> list[dict]:
    """List every visible sensor with its device's name and organization."""
    return await catalog.list_all_sensors(db, principal.scope)


@router.get("/devices/{device_id}/sensors")
async def list_sensors(
    device_id: int, db: DbSession, principal: CurrentPrincipal
) -> list[dict]:
    sensors = await catalog.list_sensors(db, device_id, principal.scope)
    return [catalog.sensor_to_dict(s) for s in sensors]


@router.post("/devices/{device_id}/sensors", status_code=201)
async def create_sensor(
    device_id: int, body: SensorCreate, db: DbSession, principal: Writer, bus: Bus
) -> dict:
    sensor = await catalog.create_sensor(
        db, device_id, body.name, body.sensor_type, body.unit, scope=principal.scope
    )
    payload = catalog.sensor_to_dict(sensor)
    await _announce(db, bus, device_id, "sensor_created", {"sensor": payload})
    return payload


@router.get("/sensors/{sensor_id}/latest")
async def sensor_latest(
    sensor_id: int, db: DbSession, principal: CurrentPrincipal
) -> dict:
    """Return the newest sample of one sensor.

    Raises:
        NotFoundError: If the sensor has no samples or is not visible.
    """
    row = await latest_by_sensor(db, sensor_id, principal.scope)
    if row is None:
        raise NotFoundError(
            f"No samples for sensor {sensor_id}.", identifier=sensor_id
        )
    return row


@router.patch("/sensors/{sensor_id}")
async def update_sensor(
    sensor_id: int,
    body: SensorUpdate,
    db: DbSession,
    principal: Writer,
    bus: Bus,
    cache: Cache,
) -> dict:
    sensor = await catalog.update_sensor(
        db,
        sensor_id,
        principal.scope,
        name=body.name,
        sensor_type=body.sensor_type,
        unit=body.unit,
        is_active=body.is_active,
    )
    payload = catalog.sensor_to_dict(sensor)
    await cache.invalidate(sensor.device_id)
    await _announce(db, bus, sensor.device_id, "sensor_updated", {"sensor": payload})
    return payload


@router.delete("/sensors/{sensor_id}", status_code=204)
async def delete_sensor(
    sensor_id: int, db: DbSession, principal: Writer, bus: Bus, cache: Cache
) -> Response:
    """Delete a sensor; its decoding configuration and samples go with it."""
    sensor = await catalog.delete_sensor(db, sensor_id, principal.scope)
    await cache.invalidate(sensor.device_id)
    await _announce(
        db, bus, sensor.device_id, "sensor_deleted", {"sensor_id": sensor_id}
    )
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Decoding configuration
# ---------------------------------------------------------------------------


@router.get("/decoding-configs")
async def list_decoding(db: DbSession, principal: CurrentPrincipal) -> list[dict]:
    return await catalog.list_decoding_configurations(db, principal.scope)


@router.get("/devices/{device_id}/decoding-configs")
async def list_device_decoding(
    device_id: int, db: DbSession, principal: CurrentPrincipal
) -> list[dict]:
    return await catalog.list_decoding_configurations(
        db, principal.scope, device_id=device_id
    )


@router.get("/sensors/{sensor_id}/decoding")
async def get_decoding(
    sensor_id: int, db: DbSession, principal: CurrentPrincipal
) -> dict:
    config = await catalog.get_decoding_configuration(db, sensor_id, principal.scope)
    return catalog.decoding_to_dict(config)


@router.put("/sensors/{sensor_id}/decoding")
async def put_decoding(
    sensor_id: int, body: DecodingIn, db: DbSession, principal: Writer, bus: Bus
) -> dict:
    """Create or replace the sensor's decoding configuration."""
    config = await catalog.set_decoding_configuration(
        db,
        sensor_id,
        catalog.DecodingParams(
            address=body.address,
            register_kind=body.register_kind,
            encoding=body.encoding,
            scale=body.scale,
            offset=body.offset,
        ),
        scope=principal.scope,
    )
    payload = catalog.decoding_to_dict(config)
    sensor = await catalog.get_sensor(db, sensor_id, principal.scope)
    await _announce(
        db, bus, sensor.device_id, "decoding_updated", {"decoding": payload}
    )
    return payload


@router.delete("/sensors/{sensor_id}/decoding", status_code=204)
async def delete_decoding(
    sensor_id: int, db: DbSession, principal: Writer, bus: Bus
) -> Response:
    sensor = await catalog.get_sensor(db, sensor_id, principal.scope)
    await catalog.delete_decoding_configuration(db, sensor_id, principal.scope)
    await _announce(
        db, bus, sensor.device_id, "decoding_deleted", {"sensor_id": sensor_id}
    )
    return Response(status_code=204)
