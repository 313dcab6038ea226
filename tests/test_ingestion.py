"""
Tests for the ingestion pipeline service.

Tests verify:
- Known readings are stored, unknown ones are dropped with a reason.
- Raw values are decoded with the sensor's configuration; values that do
  not fit the encoding are dropped.
- All samples in a batch share one timestamp and update last_seen.
- Batches are not idempotent.
- Unknown devices are rejected, or auto-registered when enabled.
- An auto-registered device is committed with its batch, never alone.
- Accepted batches invalidate the cache and are published on the bus.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.db.models import Device, Sample, Sensor
from solarmon.errors import NotFoundError, StorageError, ValidationError
from solarmon.services.bus import EventBus
from solarmon.services.catalog import ResolvedSensor
from solarmon.services.organizations import create_organization
from solarmon.services.ingestion import (
    DROP_INVALID_VALUE,
    DROP_UNKNOWN_SENSOR,
    Reading,
    ingest_fixed_fields,
    ingest_readings,
    physical_value,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _sample_count(db: AsyncSession) -> int:
    return (await db.execute(select(func.count(Sample.id)))).scalar_one()


async def _samples(db: AsyncSession, sensor_id: int) -> list[Sample]:
    result = await db.execute(select(Sample).where(Sample.sensor_id == sensor_id))
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------------


class TestPhysicalValue:
    """Conversion of one reading for one resolved sensor."""

    def _sensor(self, encoding: str | None = None, scale: float = 1.0):
        return ResolvedSensor(
            id=1,
            name="S",
            sensor_type="t",
            unit=None,
            encoding=encoding,
            scale=scale,
        )

    def test_raw_value_is_decoded(self) -> None:
        value = physical_value(
            self._sensor("unsigned16", 0.1), Reading("S", value=452)
        )
        assert value == pytest.approx(45.2)

    def test_registers_are_decoded(self) -> None:
        value = physical_value(
            self._sensor("float32"), Reading("S", registers=(0x4120, 0x0000))
        )
        assert value == 10.0

    def test_raw_value_wider_than_encoding_dropped(self) -> None:
        reading = Reading("S", value=70000)
        assert physical_value(self._sensor("unsigned16"), reading) is None

    def test_negative_raw_value_dropped(self) -> None:
        assert physical_value(self._sensor("signed16"), Reading("S", value=-1)) is None

    def test_fractional_raw_value_dropped(self) -> None:
        reading = Reading("S", value=1.5)
        assert physical_value(self._sensor("unsigned16"), reading) is None

    def test_register_word_out_of_range_dropped(self) -> None:
        reading = Reading("S", registers=(0x1_0000,))
        assert physical_value(self._sensor("unsigned16"), reading) is None

    def test_wrong_register_count_dropped(self) -> None:
        reading = Reading("S", registers=(1,))
        assert physical_value(self._sensor("unsigned32"), reading) is None

    def test_physical_sensor_passes_value_through(self) -> None:
        assert physical_value(self._sensor(), Reading("S", value=21.5)) == 21.5

    def test_physical_sensor_rejects_registers(self) -> None:
        assert physical_value(self._sensor(), Reading("S", registers=(1,))) is None

    def test_physical_flag_skips_decoding(self) -> None:
        sensor = self._sensor("unsigned16", 0.1)
        assert physical_value(sensor, Reading("S", value=850), physical=True) == 850.0


# ---------------------------------------------------------------------------
# Rich ingestion
# ---------------------------------------------------------------------------


class TestIngestReadings:
    """ingest_readings against a seeded catalog."""

    @pytest.mark.asyncio
    async def test_unknown_sensor_dropped_known_stored(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        result = await ingest_readings(
            db, "D1", [Reading("TEMP", value=25.5), Reading("NOPE", value=1.0)]
        )

        assert result.accepted == 1
        assert result.device_id == seeded["d1"]
        assert result.dropped == [
            {"sensor_name": "NOPE", "reason": DROP_UNKNOWN_SENSOR}
        ]
        assert await _sample_count(db) == 1

    @pytest.mark.asyncio
    async def test_raw_value_decoded_with_configuration(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        result = await ingest_readings(db, "D1", [Reading("RAD", value=850)])

        assert result.accepted == 1
        (sample,) = await _samples(db, seeded["d1_rad"])
        assert sample.value == 850.0

    @pytest.mark.asyncio
    async def test_invalid_raw_value_dropped(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        result = await ingest_readings(db, "D1", [Reading("RAD", value=-5)])

        assert result.accepted == 0
        assert result.dropped == [{"sensor_name": "RAD", "reason": DROP_INVALID_VALUE}]

    @pytest.mark.asyncio
    async def test_batch_shares_one_timestamp_and_sets_last_seen(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        await ingest_readings(
            db, "D1", [Reading("RAD", value=100), Reading("TEMP", value=20.0)]
        )

        rows = (await db.execute(select(Sample.ts))).scalars().all()
        assert len(rows) == 2
        assert rows[0] == rows[1]
        device = await db.get(Device, seeded["d1"])
        await db.refresh(device)
        assert device.last_seen is not None

    @pytest.mark.asyncio
    async def test_nothing_accepted_leaves_last_seen_unset(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        await ingest_readings(db, "D1", [Reading("NOPE", value=1.0)])

        device = await db.get(Device, seeded["d1"])
        await db.refresh(device)
        assert device.last_seen is None

    @pytest.mark.asyncio
    async def test_duplicate_submission_stored_twice(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        readings = [Reading("TEMP", value=20.0)]
        await ingest_readings(db, "D1", readings)
        await ingest_readings(db, "D1", readings)

        assert len(await _samples(db, seeded["d1_temp"])) == 2

    @pytest.mark.asyncio
    async def test_inactive_sensor_reading_dropped(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        sensor = await db.get(Sensor, seeded["d1_temp"])
        sensor.is_active = False
        await db.commit()

        result = await ingest_readings(db, "D1", [Reading("TEMP", value=20.0)])
        assert result.accepted == 0
        assert result.dropped[0]["reason"] == DROP_UNKNOWN_SENSOR

    @pytest.mark.asyncio
    async def test_blank_device_name_rejected(self, db: AsyncSession) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await ingest_readings(db, "  ", [Reading("X", value=1.0)])
        assert exc_info.value.field == "device_name"

    @pytest.mark.asyncio
    async def test_empty_batch_rejected(self, db: AsyncSession, seeded: dict) -> None:
        with pytest.raises(ValidationError):
            await ingest_readings(db, "D1", [])

    @pytest.mark.asyncio
    async def test_reading_with_value_and_registers_rejected(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        with pytest.raises(ValidationError):
            await ingest_readings(
                db, "D1", [Reading("RAD", value=1.0, registers=(1,))]
            )
        assert await _sample_count(db) == 0

    @pytest.mark.asyncio
    async def test_unknown_device_rejected(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        with pytest.raises(NotFoundError) as exc_info:
            await ingest_readings(db, "GHOST", [Reading("RAD", value=1.0)])
        assert exc_info.value.identifier == "GHOST"


class TestIngestSideEffects:
    """Cache invalidation and live broadcast after commit."""

    @pytest.mark.asyncio
    async def test_accepted_batch_published_to_tenant(
        self, db: AsyncSession, seeded: dict, bus: EventBus, mock_cache: AsyncMock
    ) -> None:
        own = bus.subscribe(seeded["acme"])
        other = bus.subscribe(seeded["beta"])

        await ingest_readings(
            db, "D1", [Reading("RAD", value=850)], bus=bus, cache=mock_cache
        )

        event = await own.get()
        assert event.type == "sample_ingested"
        assert event.data["device_name"] == "D1"
        (sample,) = event.data["samples"]
        assert sample["sensor_name"] == "RAD"
        assert sample["value"] == 850.0
        assert sample["unit"] == "W/m²"
        assert other._queue.empty()
        mock_cache.invalidate.assert_awaited_once_with(seeded["d1"])

    @pytest.mark.asyncio
    async def test_fully_dropped_batch_not_published(
        self, db: AsyncSession, seeded: dict, bus: EventBus, mock_cache: AsyncMock
    ) -> None:
        sub = bus.subscribe(None)

        await ingest_readings(
            db, "D1", [Reading("NOPE", value=1.0)], bus=bus, cache=mock_cache
        )

        assert sub._queue.empty()
        mock_cache.invalidate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_broadcast_failure_does_not_fail_batch(
        self, db: AsyncSession, seeded: dict
    ) -> None:
        broken = MagicMock(spec=EventBus)
        broken.publish.side_effect = RuntimeError("boom")

        result = await ingest_readings(
            db, "D1", [Reading("TEMP", value=20.0)], bus=broken
        )
        assert result.accepted == 1


# ---------------------------------------------------------------------------
# Auto-registration and the fixed-field variant
# ---------------------------------------------------------------------------


class TestAutoRegistration:
    """Unknown devices with auto-registration enabled."""

    @pytest.mark.asyncio
    async def test_rich_variant_creates_device_without_sensors(
        self, db: AsyncSession
    ) -> None:
        result = await ingest_readings(
            db,
            "NEW-1",
            [Reading("RAD", value=1.0)],
            auto_register=True,
            auto_register_organization="Unassigned",
        )

        assert result.accepted == 0
        assert result.dropped[0]["reason"] == DROP_UNKNOWN_SENSOR
        device = (
            await db.execute(select(Device).where(Device.name == "NEW-1"))
        ).scalar_one()
        assert device.id == result.device_id

    @pytest.mark.asyncio
    async def test_fixed_fields_create_default_sensors(self, db: AsyncSession) -> None:
        result = await ingest_fixed_fields(
            db,
            "NEW-2",
            radiation=850.0,
            temperature1=25.5,
            auto_register=True,
        )

        assert result.accepted == 2
        names = (
            await db.execute(
                select(Sensor.name)
                .where(Sensor.device_id == result.device_id)
                .order_by(Sensor.name)
            )
        ).scalars().all()
        assert names == ["radiation", "temperature1", "temperature2"]

    @pytest.mark.asyncio
    async def test_second_submission_reuses_device(self, db: AsyncSession) -> None:
        first = await ingest_fixed_fields(
            db, "NEW-3", radiation=1.0, auto_register=True
        )
        second = await ingest_fixed_fields(
            db, "NEW-3", radiation=2.0, auto_register=True
        )
        assert first.device_id == second.device_id

    @pytest.mark.asyncio
    async def test_fixed_fields_without_any_field_rejected(
        self, db: AsyncSession
    ) -> None:
        with pytest.raises(ValidationError):
            await ingest_fixed_fields(db, "NEW-4", auto_register=True)

    @pytest.mark.asyncio
    async def test_failed_batch_leaves_no_device_behind(
        self, db: AsyncSession
    ) -> None:
        await create_organization(db, "Unassigned")
        failing_commit = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("disk I/O error"))
        )

        with patch.object(db, "commit", failing_commit):
            with pytest.raises(StorageError):
                await ingest_fixed_fields(
                    db, "NEW-5", radiation=1.0, auto_register=True
                )

        found = (
            await db.execute(select(Device).where(Device.name == "NEW-5"))
        ).scalar_one_or_none()
        assert found is None
        sensors = (await db.execute(select(func.count(Sensor.id)))).scalar_one()
        assert sensors == 0
