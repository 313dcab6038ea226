"""
Sensor catalog: sensors under a device and their decoding configurations.

The (device_id, name) unique constraint on ``sensors`` is the index behind
``resolve``/``resolve_many``, the hot lookup path used by ingestion. A
sensor owns at most one decoding configuration; setting it again replaces
the stored one and bumps its version. Deleting a sensor removes its
configuration and its samples through the database cascade.

CHANGELOG:
- 2026-10-17: List all sensors and decoding configurations across devices
- 2026-10-17: Lock resolved sensor rows for the duration of an ingestion batch
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.db.models import DecodingConfig, Device, Sensor
from solarmon.decoding import validate_config
from solarmon.errors import ConflictError, NotFoundError, StorageError, ValidationError
from solarmon.services.devices import get_device

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodingParams:
    """Requested decoding configuration, validated before it is stored."""

    address: int
    register_kind: str
    encoding: str
    scale: float = 1.0
    offset: float = 0.0


@dataclass(frozen=True)
class ResolvedSensor:
    """What ingestion needs to know about one sensor.

    ``encoding`` is None for sensors without a decoding configuration, whose
    readings are already physical values.
    """

    id: int
    name: str
    sensor_type: str
    unit: str | None
    encoding: str | None = None
    scale: float = 1.0
    offset: float = 0.0


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def sensor_to_dict(sensor: Sensor) -> dict:
    return {
        "id": sensor.id,
        "device_id": sensor.device_id,
        "name": sensor.name,
        "sensor_type": sensor.sensor_type,
        "unit": sensor.unit,
        "is_active": sensor.is_active,
    }


def decoding_to_dict(config: DecodingConfig) -> dict:
    return {
        "sensor_id": config.sensor_id,
        "address": config.address,
        "register_kind": config.register_kind,
        "encoding": config.encoding,
        "scale": config.scale,
        "offset": config.offset,
        "version": config.version,
    }


# ---------------------------------------------------------------------------
# Sensors
# ---------------------------------------------------------------------------


async def get_sensor(db: AsyncSession, sensor_id: int, scope: int | None) -> Sensor:
    """Return a sensor whose device is visible to *scope*.

    Raises:
        NotFoundError: If the sensor does not exist or is out of scope.
    """
    stmt = select(Sensor).join(Device, Sensor.device_id == Device.id)
    stmt = stmt.where(Sensor.id == sensor_id)
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    result = await db.execute(stmt)
    sensor = result.scalar_one_or_none()
    if sensor is None:
        raise NotFoundError(f"Sensor {sensor_id} not found.", identifier=sensor_id)
    return sensor


async def list_sensors(
    db: AsyncSession, device_id: int, scope: int | None
) -> list[Sensor]:
    await get_device(db, device_id, scope)
    result = await db.execute(
        select(Sensor).where(Sensor.device_id == device_id).order_by(Sensor.name)
    )
    return list(result.scalars().all())


async def list_all_sensors(db: AsyncSession, scope: int | None) -> list[dict]:
    """List every sensor visible to *scope* together with its device."""
    stmt = (
        select(Sensor, Device)
        .join(Device, Sensor.device_id == Device.id)
        .order_by(Device.name, Sensor.name)
    )
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    result = await db.execute(stmt)
    return [
        {
            **sensor_to_dict(sensor),
            "device_name": device.name,
            "organization_id": device.organization_id,
            "device_is_active": device.is_active,
        }
        for sensor, device in result.all()
    ]


async def create_sensor(
    db: AsyncSession,
    device_id: int,
    name: str,
    sensor_type: str,
    unit: str | None = None,
    scope: int | None = None,
) -> Sensor:
    """Create a sensor under a device.

    Args:
        db: Async database session.
        device_id: Owning device.
        name: Name unique within the device; the key readings refer to.
        sensor_type: Free-form classification (radiation, temperature, ...).
        unit: Optional unit label.
        scope: Caller's tenant scope.

    Returns:
        Sensor: The new sensor.

    Raises:
        ValidationError: If *name* or *sensor_type* is empty.
        NotFoundError: If the device is absent or out of scope.
        ConflictError: If the device already has a sensor called *name*.
    """
    name = (name or "").strip()
    sensor_type = (sensor_type or "").strip()
    if not name:
        raise ValidationError("Sensor name must not be empty.", field="name")
    if not sensor_type:
        raise ValidationError("Sensor type must not be empty.", field="sensor_type")
    await get_device(db, device_id, scope)

    sensor = Sensor(device_id=device_id, name=name, sensor_type=sensor_type, unit=unit)
    db.add(sensor)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Device {device_id} already has a sensor named '{name}'.",
            field="name",
            identifier=name,
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to create sensor %s", name, exc_info=True)
        raise StorageError("Failed to create sensor.") from exc

    logger.info("Created sensor %s (id=%d) on device %d", name, sensor.id, device_id)
    return sensor


async def update_sensor(
    db: AsyncSession,
    sensor_id: int,
    scope: int | None,
    *,
    name: str | None = None,
    sensor_type: str | None = None,
    unit: str | None = None,
    is_active: bool | None = None,
) -> Sensor:
    """Update the sensor fields that are not None.

    Raises:
        ValidationError: If a new name or type is blank.
        ConflictError: If the rename collides with another sensor.
    """
    sensor = await get_sensor(db, sensor_id, scope)
    if name is not None:
        if not name.strip():
            raise ValidationError("Sensor name must not be empty.", field="name")
        sensor.name = name.strip()
    if sensor_type is not None:
        if not sensor_type.strip():
            raise ValidationError(
                "Sensor type must not be empty.", field="sensor_type"
            )
        sensor.sensor_type = sensor_type.strip()
    if unit is not None:
        sensor.unit = unit
    if is_active is not None:
        sensor.is_active = is_active
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Another sensor on this device is already named '{name}'.",
            field="name",
            identifier=name,
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to update sensor %d", sensor_id, exc_info=True)
        raise StorageError(
            f"Failed to update sensor {sensor_id}.", identifier=sensor_id
        ) from exc
    return sensor


async def delete_sensor(db: AsyncSession, sensor_id: int, scope: int | None) -> Sensor:
    """Delete a sensor together with its configuration and samples."""
    sensor = await get_sensor(db, sensor_id, scope)
    await db.execute(delete(Sensor).where(Sensor.id == sensor_id))
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to delete sensor %d", sensor_id, exc_info=True)
        raise StorageError(
            f"Failed to delete sensor {sensor_id}.", identifier=sensor_id
        ) from exc
    logger.info("Deleted sensor %s (id=%d)", sensor.name, sensor_id)
    return sensor


# ---------------------------------------------------------------------------
# Decoding configuration
# ---------------------------------------------------------------------------


async def _find_decoding(db: AsyncSession, sensor_id: int) -> DecodingConfig | None:
    result = await db.execute(
        select(DecodingConfig).where(DecodingConfig.sensor_id == sensor_id)
    )
    return result.scalar_one_or_none()


async def get_decoding_configuration(
    db: AsyncSession, sensor_id: int, scope: int | None
) -> DecodingConfig:
    """Return the sensor's decoding configuration.

    Raises:
        NotFoundError: If the sensor is unknown/out of scope or has none.
    """
    await get_sensor(db, sensor_id, scope)
    config = await _find_decoding(db, sensor_id)
    if config is None:
        raise NotFoundError(
            f"Sensor {sensor_id} has no decoding configuration.",
            identifier=sensor_id,
        )
    return config


async def list_decoding_configurations(
    db: AsyncSession, scope: int | None, device_id: int | None = None
) -> list[dict]:
    """List decoding configurations with their sensor and device names.

    Args:
        db: Async database session.
        scope: Caller's tenant scope.
        device_id: Only configurations of this device's sensors.

    Returns:
        list[dict]: Ordered by device name, then sensor name.

    Raises:
        NotFoundError: If *device_id* is given but unknown or out of scope.
    """
    if device_id is not None:
        await get_device(db, device_id, scope)
    stmt = (
        select(
            DecodingConfig,
            Sensor.name.label("sensor_name"),
            Device.id.label("device_id"),
            Device.name.label("device_name"),
        )
        .join(Sensor, DecodingConfig.sensor_id == Sensor.id)
        .join(Device, Sensor.device_id == Device.id)
        .order_by(Device.name, Sensor.name)
    )
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    if device_id is not None:
        stmt = stmt.where(Device.id == device_id)
    result = await db.execute(stmt)
    return [
        {
            **decoding_to_dict(row.DecodingConfig),
            "sensor_name": row.sensor_name,
            "device_id": row.device_id,
            "device_name": row.device_name,
        }
        for row in result.all()
    ]


async def set_decoding_configuration(
    db: AsyncSession,
    sensor_id: int,
    params: DecodingParams,
    scope: int | None = None,
) -> DecodingConfig:
    """Create or replace a sensor's decoding configuration.

    The configuration is validated first, so ingestion only ever decodes
    with a known encoding. Replacing bumps ``version``.

    Raises:
        ConfigurationError: If the configuration is invalid.
        NotFoundError: If the sensor is unknown or out of scope.
    """
    kind, enc = validate_config(
        params.address,
        params.register_kind,
        params.encoding,
        params.scale,
        params.offset,
    )
    await get_sensor(db, sensor_id, scope)

    config = await _find_decoding(db, sensor_id)
    if config is None:
        config = DecodingConfig(sensor_id=sensor_id, version=1)
        db.add(config)
    else:
        config.version = config.version + 1
    config.address = params.address
    config.register_kind = kind.value
    config.encoding = enc.value
    config.scale = params.scale
    config.offset = params.offset
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error(
            "Failed to store decoding configuration for sensor %d",
            sensor_id,
            exc_info=True,
        )
        raise StorageError(
            f"Failed to store decoding configuration for sensor {sensor_id}.",
            identifier=sensor_id,
        ) from exc

    logger.info(
        "Decoding configuration for sensor %d set to %s x%s %+g (v%d)",
        sensor_id,
        config.encoding,
        config.scale,
        config.offset,
        config.version,
    )
    return config


async def delete_decoding_configuration(
    db: AsyncSession, sensor_id: int, scope: int | None
) -> None:
    """Remove a sensor's decoding configuration; its readings become physical."""
    await get_decoding_configuration(db, sensor_id, scope)
    await db.execute(
        delete(DecodingConfig).where(DecodingConfig.sensor_id == sensor_id)
    )
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StorageError(
            f"Failed to delete decoding configuration for sensor {sensor_id}.",
            identifier=sensor_id,
        ) from exc


# ---------------------------------------------------------------------------
# Resolution (ingestion hot path)
# ---------------------------------------------------------------------------


def _resolve_stmt(device_id: int, names: Iterable[str]):
    return (
        select(
            Sensor.id,
            Sensor.name,
            Sensor.sensor_type,
            Sensor.unit,
            DecodingConfig.encoding,
            DecodingConfig.scale,
            DecodingConfig.offset,
        )
        .outerjoin(DecodingConfig, DecodingConfig.sensor_id == Sensor.id)
        .where(Sensor.device_id == device_id)
        .where(Sensor.name.in_(list(names)))
        .where(Sensor.is_active.is_(True))
        .with_for_update(read=True, of=Sensor)
    )


def _to_resolved(row) -> ResolvedSensor:
    return ResolvedSensor(
        id=row.id,
        name=row.name,
        sensor_type=row.sensor_type,
        unit=row.unit,
        encoding=row.encoding,
        scale=row.scale if row.scale is not None else 1.0,
        offset=row.offset if row.offset is not None else 0.0,
    )


async def resolve_many(
    db: AsyncSession, device_id: int, names: Iterable[str]
) -> dict[str, ResolvedSensor]:
    """Resolve sensor names under a device in one indexed query.

    Only active sensors are returned; unknown or inactive names are simply
    absent from the result. On PostgreSQL the matched rows are share-locked
    until the caller's transaction ends, so a concurrent delete either
    completes before resolution (the reading is dropped) or waits for the
    batch to commit.

    Returns:
        dict[str, ResolvedSensor]: Mapping of sensor name to sensor.
    """
    names = set(names)
    if not names:
        return {}
    result = await db.execute(_resolve_stmt(device_id, names))
    return {row.name: _to_resolved(row) for row in result.all()}


async def resolve(
    db: AsyncSession, device_id: int, sensor_name: str
) -> ResolvedSensor | None:
    """Resolve a single active sensor by name, or None."""
    return (await resolve_many(db, device_id, [sensor_name])).get(sensor_name)
