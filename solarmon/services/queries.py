"""
Tenant-scoped query engine over stored samples.

Every query takes a ``scope``: an organization id restricts results to
devices owned by that tenant, None (administrator) applies no restriction.
A filter naming a device or sensor outside the scope simply matches
nothing; no query here raises for an out-of-scope reference.

- latest_by_device: newest sample per active sensor (row_number window).
- latest_by_sensor: newest sample of a single sensor.
- range_query: samples newest first, limited (default 1000).
- statistics: count/min/max/avg per sensor, or one row for a given sensor.
- export_csv: the unlimited range query as CSV text.

CHANGELOG:
- 2026-10-17: Add latest_by_sensor
- 2026-10-17: Cache latest rows per device in Redis
- 2026-10-17: Write CSV through the csv module so separators are quoted
- 2026-10-17: Initial creation

TODO:
- None
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.cache.redis_client import LatestCache
from solarmon.db.models import Device, Sample, Sensor, as_utc
from solarmon.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 1000

CSV_HEADER = ("Timestamp", "Device Name", "Sensor Name", "Sensor Type", "Value", "Unit")


@dataclass(frozen=True)
class SampleFilters:
    """Optional constraints on a sample query; None means unconstrained.

    Attributes:
        device_id: Only samples of this device.
        sensor_id: Only samples of this sensor.
        start: Inclusive lower bound on the sample timestamp.
        end: Inclusive upper bound on the sample timestamp.
        limit: Maximum rows for range queries; None uses the default.
    """

    device_id: int | None = None
    sensor_id: int | None = None
    start: datetime | None = None
    end: datetime | None = None
    limit: int | None = None


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _apply_filters(stmt: Select, filters: SampleFilters, scope: int | None) -> Select:
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    if filters.device_id is not None:
        stmt = stmt.where(Device.id == filters.device_id)
    if filters.sensor_id is not None:
        stmt = stmt.where(Sensor.id == filters.sensor_id)
    if filters.start is not None:
        stmt = stmt.where(Sample.ts >= _utc(filters.start))
    if filters.end is not None:
        stmt = stmt.where(Sample.ts <= _utc(filters.end))
    return stmt


def _join_owners(stmt: Select) -> Select:
    return stmt.join(Sensor, Sensor.id == Sample.sensor_id).join(
        Device, Device.id == Sensor.device_id
    )


def _sample_row(row) -> dict:
    ts = as_utc(row.ts)
    return {
        "id": row.id,
        "device_id": row.device_id,
        "device_name": row.device_name,
        "sensor_id": row.sensor_id,
        "sensor_name": row.sensor_name,
        "sensor_type": row.sensor_type,
        "unit": row.unit,
        "value": row.value,
        "ts": ts.isoformat(),
    }


# ---------------------------------------------------------------------------
# Latest values
# ---------------------------------------------------------------------------


async def _device_visible(db: AsyncSession, device_id: int, scope: int | None) -> bool:
    stmt = select(Device.id).where(Device.id == device_id)
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is not None


async def _query_latest(db: AsyncSession, device_id: int) -> list[dict]:
    ranked = (
        select(
            Sample.id,
            Sample.sensor_id,
            Sample.value,
            Sample.ts,
            func.row_number()
            .over(
                partition_by=Sample.sensor_id,
                order_by=(Sample.ts.desc(), Sample.id.desc()),
            )
            .label("rn"),
        )
        .join(Sensor, Sensor.id == Sample.sensor_id)
        .where(Sensor.device_id == device_id)
        .where(Sensor.is_active.is_(True))
        .subquery()
    )
    stmt = (
        select(
            ranked.c.id,
            ranked.c.value,
            ranked.c.ts,
            Sensor.id.label("sensor_id"),
            Sensor.name.label("sensor_name"),
            Sensor.sensor_type,
            Sensor.unit,
            Device.id.label("device_id"),
            Device.name.label("device_name"),
        )
        .select_from(ranked)
        .join(Sensor, Sensor.id == ranked.c.sensor_id)
        .join(Device, Device.id == Sensor.device_id)
        .where(ranked.c.rn == 1)
        .order_by(Sensor.name)
    )
    result = await db.execute(stmt)
    return [_sample_row(row) for row in result.all()]


async def latest_by_device(
    db: AsyncSession,
    device_id: int,
    scope: int | None,
    cache: LatestCache | None = None,
) -> list[dict]:
    """Return the most recent sample of each active sensor of a device.

    At most one row per sensor; sensors without samples are absent. Ties on
    the timestamp (one batch shares a timestamp) go to the newest row id.
    The scope check always runs before the cache is consulted.

    Args:
        db: Async database session.
        device_id: Device to query.
        scope: Caller's tenant scope.
        cache: Optional latest-value cache.

    Returns:
        list[dict]: Rows ordered by sensor name; empty when the device is
        unknown or out of scope.
    """
    if not await _device_visible(db, device_id, scope):
        return []

    if cache is not None:
        cached = await cache.get(device_id)
        if cached is not None:
            return cached

    rows = await _query_latest(db, device_id)
    if cache is not None:
        await cache.set(device_id, rows)
    return rows


# ---------------------------------------------------------------------------
# Range, statistics, export
# ---------------------------------------------------------------------------


def _samples_stmt() -> Select:
    return (
        select(
            Sample.id,
            Sample.value,
            Sample.ts,
            Sensor.id.label("sensor_id"),
            Sensor.name.label("sensor_name"),
            Sensor.sensor_type,
            Sensor.unit,
            Device.id.label("device_id"),
            Device.name.label("device_name"),
        )
        .select_from(Sample)
        .join(Sensor, Sensor.id == Sample.sensor_id)
        .join(Device, Device.id == Sensor.device_id)
    )


async def _select_samples(
    db: AsyncSession, filters: SampleFilters, scope: int | None, limit: int | None
) -> list[dict]:
    stmt = _apply_filters(_samples_stmt(), filters, scope)
    stmt = stmt.order_by(Sample.ts.desc(), Sample.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return [_sample_row(row) for row in result.all()]


async def latest_by_sensor(
    db: AsyncSession, sensor_id: int, scope: int | None
) -> dict | None:
    """Return the newest sample of one sensor, or None.

    None covers a sensor without samples as well as an unknown or
    out-of-scope one. Inactive sensors still report their last value.
    """
    rows = await _select_samples(db, SampleFilters(sensor_id=sensor_id), scope, 1)
    return rows[0] if rows else None


async def range_query(
    db: AsyncSession,
    filters: SampleFilters,
    scope: int | None,
    default_limit: int = DEFAULT_LIMIT,
) -> list[dict]:
    """Return samples matching *filters*, newest first.

    Args:
        db: Async database session.
        filters: Optional device/sensor/time constraints and row limit.
        scope: Caller's tenant scope.
        default_limit: Limit applied when ``filters.limit`` is None.

    Returns:
        list[dict]: At most ``limit`` rows, ordered by timestamp descending.

    Raises:
        ValidationError: If the limit is not positive.
    """
    limit = filters.limit if filters.limit is not None else default_limit
    if limit < 1:
        raise ValidationError("limit must be >= 1.", field="limit")
    return await _select_samples(db, filters, scope, limit)


async def statistics(
    db: AsyncSession, filters: SampleFilters, scope: int | None
) -> list[dict]:
    """Return count, min, max and average of matching samples.

    Without ``filters.sensor_id`` there is one row per sensor that has
    matching samples. With it there is exactly one row, whose count is 0
    and aggregates are None when nothing matches (including when the sensor
    is out of scope).
    """
    aggregates = (
        func.count(Sample.id).label("sample_count"),
        func.min(Sample.value).label("min_value"),
        func.max(Sample.value).label("max_value"),
        func.avg(Sample.value).label("avg_value"),
    )
    if filters.sensor_id is not None:
        stmt = select(*aggregates).select_from(Sample)
        stmt = _apply_filters(_join_owners(stmt), filters, scope)
        row = (await db.execute(stmt)).one()
        return [
            {
                "sensor_id": filters.sensor_id,
                "count": int(row.sample_count),
                "min": row.min_value,
                "max": row.max_value,
                "avg": float(row.avg_value) if row.avg_value is not None else None,
            }
        ]

    stmt = select(
        Device.id.label("device_id"),
        Device.name.label("device_name"),
        Sensor.id.label("sensor_id"),
        Sensor.name.label("sensor_name"),
        Sensor.sensor_type,
        Sensor.unit,
        *aggregates,
    ).select_from(Sample)
    stmt = _apply_filters(_join_owners(stmt), filters, scope)
    stmt = stmt.group_by(
        Device.id, Device.name, Sensor.id, Sensor.name, Sensor.sensor_type, Sensor.unit
    ).order_by(Device.name, Sensor.name)
    result = await db.execute(stmt)
    return [
        {
            "device_id": row.device_id,
            "device_name": row.device_name,
            "sensor_id": row.sensor_id,
            "sensor_name": row.sensor_name,
            "sensor_type": row.sensor_type,
            "unit": row.unit,
            "count": int(row.sample_count),
            "min": row.min_value,
            "max": row.max_value,
            "avg": float(row.avg_value) if row.avg_value is not None else None,
        }
        for row in result.all()
    ]


def _csv_value(value: float) -> str:
    """Render integral floats without a trailing ``.0``."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


async def export_csv(
    db: AsyncSession, filters: SampleFilters, scope: int | None
) -> str:
    """Render every matching sample as CSV text, newest first.

    The limit on *filters* is ignored. Missing optional fields such as a
    null unit become empty fields. Fields containing a comma, quote or line
    break are quoted.
    """
    rows = await _select_samples(db, filters, scope, limit=None)
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for row in rows:
        writer.writerow(
            (
                row["ts"],
                row["device_name"],
                row["sensor_name"],
                row["sensor_type"],
                _csv_value(row["value"]),
                row["unit"],
            )
        )
    logger.info("Exported %d sample(s) to CSV", len(rows))
    return buf.getvalue()
