"""
Ingestion pipeline for sensor readings submitted by field devices.

A batch moves through Received -> Validated -> Resolved -> Persisted ->
Broadcast, or stops at Rejected:

- Validated: the device name is non-empty and there is at least one reading.
- Resolved: the device must exist (or is auto-registered when the deployment
  enables it); each reading is looked up in the sensor catalog. Readings for
  unknown or inactive sensors, and raw values that do not fit their
  encoding, are dropped without failing the batch.
- Persisted: all accepted samples share one server timestamp and are written
  in one transaction together with the device's ``last_seen``.
- Broadcast: after commit the latest-value cache is invalidated and a
  ``sample_ingested`` event is published. Neither can fail the batch.

Batches are not idempotent: submitting the same readings twice stores them
twice.

CHANGELOG:
- 2026-10-17: Commit auto-registered devices with their first batch
- 2026-10-17: Add the fixed-field (radiation/temperature) variant
- 2026-10-17: Decode raw register values with the sensor's configuration
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.cache.redis_client import LatestCache
from solarmon.db.models import Device, Sample, Sensor
from solarmon.decoding import combine_registers, decode, word_count
from solarmon.errors import NotFoundError, StorageError, ValidationError
from solarmon.services.bus import EventBus, LiveEvent
from solarmon.services.catalog import ResolvedSensor, resolve_many
from solarmon.services.organizations import get_or_create_organization

logger = logging.getLogger(__name__)

# Sensors the fixed-field variant writes to: (name, sensor_type, unit).
FIXED_FIELD_SENSORS: tuple[tuple[str, str, str], ...] = (
    ("radiation", "radiation", "W/m²"),
    ("temperature1", "temperature", "°C"),
    ("temperature2", "temperature", "°C"),
)

DROP_UNKNOWN_SENSOR = "unknown_sensor"
DROP_INVALID_VALUE = "invalid_value"


@dataclass(frozen=True)
class Reading:
    """One named reading inside a batch.

    Exactly one of ``value`` (a number) or ``registers`` (raw 16-bit words,
    high word first) is set.
    """

    sensor_name: str
    value: float | None = None
    registers: tuple[int, ...] | None = None


@dataclass
class IngestResult:
    """Outcome of an accepted batch.

    Attributes:
        accepted: Number of samples persisted.
        dropped: One ``{"sensor_name", "reason"}`` entry per dropped reading.
        device_id: Device the batch was stored under.
        samples: Persisted samples as sent to live subscribers.
    """

    accepted: int
    device_id: int
    dropped: list[dict] = field(default_factory=list)
    samples: list[dict] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Validation and value conversion
# ---------------------------------------------------------------------------


def _validate(device_name: str, readings: Sequence[Reading]) -> str:
    name = (device_name or "").strip()
    if not name:
        raise ValidationError("Device name is required.", field="device_name")
    if not readings:
        raise ValidationError("At least one reading is required.", field="readings")
    for idx, reading in enumerate(readings):
        if not (reading.sensor_name or "").strip():
            raise ValidationError(
                f"Reading {idx} has no sensor name.", field="sensor_name"
            )
        if (reading.value is None) == (reading.registers is None):
            raise ValidationError(
                f"Reading {idx} must carry exactly one of value or registers.",
                field="value",
                identifier=reading.sensor_name,
            )
    return name


def _raw_value(reading: Reading, encoding: str) -> int | None:
    """Return the unsigned raw register value, or None if it does not fit."""
    width = 16 * word_count(encoding)
    if reading.registers is not None:
        if any(not 0 <= word <= 0xFFFF for word in reading.registers):
            return None
        try:
            return combine_registers(reading.registers, encoding)
        except ValueError:
            return None
    value = reading.value
    if not math.isfinite(value) or not float(value).is_integer():
        return None
    raw = int(value)
    if not 0 <= raw < (1 << width):
        return None
    return raw


def physical_value(
    sensor: ResolvedSensor, reading: Reading, *, physical: bool = False
) -> float | None:
    """Convert a reading to the value stored for *sensor*.

    Sensors with a decoding configuration receive raw register values unless
    *physical* is set; sensors without one receive physical values.

    Returns:
        float | None: The value to store, or None when the reading is dropped.
    """
    if physical or sensor.encoding is None:
        if reading.registers is not None or reading.value is None:
            return None
        value = float(reading.value)
        return value if math.isfinite(value) else None

    raw = _raw_value(reading, sensor.encoding)
    if raw is None:
        return None
    value = decode(raw, sensor.encoding, sensor.scale, sensor.offset)
    return value if math.isfinite(value) else None


# ---------------------------------------------------------------------------
# Device resolution
# ---------------------------------------------------------------------------


async def _find_device(db: AsyncSession, name: str) -> Device | None:
    result = await db.execute(select(Device).where(Device.name == name))
    return result.scalar_one_or_none()


async def _auto_register_device(
    db: AsyncSession,
    name: str,
    organization_name: str,
    default_sensors: Sequence[tuple[str, str, str]] = (),
) -> Device:
    """Create an unknown device under the auto-register organization.

    The device and its default sensors are only flushed; they are committed
    together with the batch, so a batch that fails to persist leaves no
    device behind. A concurrent submission that registered the same name
    first wins; this call then returns that device.
    """
    org = await get_or_create_organization(db, organization_name)
    device = Device(
        name=name,
        organization_id=org.id,
        description="Auto-registered on first submission",
    )
    db.add(device)
    try:
        await db.flush()
        db.add_all(
            [
                Sensor(
                    device_id=device.id,
                    name=sensor_name,
                    sensor_type=sensor_type,
                    unit=unit,
                )
                for sensor_name, sensor_type, unit in default_sensors
            ]
        )
        await db.flush()
    except IntegrityError:
        await db.rollback()
        existing = await _find_device(db, name)
        if existing is None:
            raise StorageError(
                f"Failed to auto-register device '{name}'.", identifier=name
            ) from None
        return existing
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to auto-register device %s", name, exc_info=True)
        raise StorageError(
            f"Failed to auto-register device '{name}'.", identifier=name
        ) from exc

    logger.info(
        "Auto-registering device %s (id=%d) in organization %s",
        name,
        device.id,
        organization_name,
    )
    return device


async def _resolve_device(
    db: AsyncSession,
    name: str,
    auto_register: bool,
    auto_register_organization: str,
    default_sensors: Sequence[tuple[str, str, str]],
) -> Device:
    device = await _find_device(db, name)
    if device is not None:
        return device
    if not auto_register:
        raise NotFoundError(
            f"Device '{name}' not found. Register the device first.",
            field="device_name",
            identifier=name,
        )
    return await _auto_register_device(
        db, name, auto_register_organization, default_sensors
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


async def _ingest(
    db: AsyncSession,
    device_name: str,
    readings: Sequence[Reading],
    *,
    physical: bool,
    default_sensors: Sequence[tuple[str, str, str]],
    bus: EventBus | None,
    cache: LatestCache | None,
    auto_register: bool,
    auto_register_organization: str,
) -> IngestResult:
    name = _validate(device_name, readings)
    device = await _resolve_device(
        db, name, auto_register, auto_register_organization, default_sensors
    )
    device_id = device.id
    tenant_id = device.organization_id

    now = datetime.now(UTC)
    dropped: list[dict] = []
    pending: list[tuple[ResolvedSensor, Sample]] = []
    try:
        sensors = await resolve_many(db, device_id, (r.sensor_name for r in readings))
        for reading in readings:
            sensor = sensors.get(reading.sensor_name)
            if sensor is None:
                reason = DROP_UNKNOWN_SENSOR
                value = None
            else:
                reason = DROP_INVALID_VALUE
                value = physical_value(sensor, reading, physical=physical)
            if value is None:
                logger.warning(
                    "Dropping reading %s for device %s (%s)",
                    reading.sensor_name,
                    name,
                    reason,
                )
                dropped.append({"sensor_name": reading.sensor_name, "reason": reason})
                continue
            pending.append((sensor, Sample(sensor_id=sensor.id, value=value, ts=now)))

        if pending:
            db.add_all([sample for _, sample in pending])
            await db.execute(
                update(Device).where(Device.id == device_id).values(last_seen=now)
            )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to persist batch for device %s", name, exc_info=True)
        raise StorageError(
            f"Failed to persist readings for device '{name}'.", identifier=name
        ) from exc

    samples = [
        {
            "id": sample.id,
            "sensor_id": sensor.id,
            "sensor_name": sensor.name,
            "sensor_type": sensor.sensor_type,
            "unit": sensor.unit,
            "value": sample.value,
            "ts": now.isoformat(),
        }
        for sensor, sample in pending
    ]
    logger.info(
        "Ingested %d/%d readings for device %s", len(samples), len(readings), name
    )

    if samples:
        if cache is not None:
            await cache.invalidate(device_id)
        if bus is not None:
            _broadcast(bus, tenant_id, device_id, name, samples, now)

    return IngestResult(
        accepted=len(samples), device_id=device_id, dropped=dropped, samples=samples
    )


def _broadcast(
    bus: EventBus,
    tenant_id: int,
    device_id: int,
    device_name: str,
    samples: list[dict],
    ts: datetime,
) -> None:
    event = LiveEvent(
        type="sample_ingested",
        tenant_id=tenant_id,
        data={"device_id": device_id, "device_name": device_name, "samples": samples},
        ts=ts,
    )
    try:
        delivered = bus.publish(event)
    except Exception:
        logger.warning(
            "Broadcast failed for device %s; batch already committed",
            device_name,
            exc_info=True,
        )
        return
    logger.debug(
        "sample_ingested for %s delivered to %d subscriber(s)",
        device_name,
        delivered,
    )


async def ingest_readings(
    db: AsyncSession,
    device_name: str,
    readings: Sequence[Reading],
    *,
    bus: EventBus | None = None,
    cache: LatestCache | None = None,
    auto_register: bool = False,
    auto_register_organization: str = "Unassigned",
) -> IngestResult:
    """Ingest a batch of named readings for a device.

    Args:
        db: Async SQLAlchemy session.
        device_name: The device's self-asserted name.
        readings: Named readings; raw for decoded sensors, physical otherwise.
        bus: Live distribution bus to announce accepted samples on.
        cache: Latest-value cache to invalidate for the device.
        auto_register: Create an unknown device instead of rejecting it.
        auto_register_organization: Organization receiving such devices.

    Returns:
        IngestResult: Accepted count, dropped readings and stored samples.

    Raises:
        ValidationError: Empty device name, no readings, or a malformed reading.
        NotFoundError: Unknown device with auto-registration disabled.
        StorageError: The batch could not be persisted; nothing was stored.
    """
    return await _ingest(
        db,
        device_name,
        readings,
        physical=False,
        default_sensors=(),
        bus=bus,
        cache=cache,
        auto_register=auto_register,
        auto_register_organization=auto_register_organization,
    )


async def ingest_fixed_fields(
    db: AsyncSession,
    device_name: str,
    *,
    radiation: float | None = None,
    temperature1: float | None = None,
    temperature2: float | None = None,
    bus: EventBus | None = None,
    cache: LatestCache | None = None,
    auto_register: bool = False,
    auto_register_organization: str = "Unassigned",
) -> IngestResult:
    """Ingest the simple radiation/temperature submission.

    The fields are stored as physical values on the device's ``radiation``,
    ``temperature1`` and ``temperature2`` sensors. A device created by
    auto-registration gets those three sensors.

    Raises:
        ValidationError: Empty device name or no field set.
        NotFoundError: Unknown device with auto-registration disabled.
        StorageError: The batch could not be persisted.
    """
    fields = {
        "radiation": radiation,
        "temperature1": temperature1,
        "temperature2": temperature2,
    }
    readings = [
        Reading(sensor_name=sensor_name, value=value)
        for sensor_name, value in fields.items()
        if value is not None
    ]
    return await _ingest(
        db,
        device_name,
        readings,
        physical=True,
        default_sensors=FIXED_FIELD_SENSORS,
        bus=bus,
        cache=cache,
        auto_register=auto_register,
        auto_register_organization=auto_register_organization,
    )
