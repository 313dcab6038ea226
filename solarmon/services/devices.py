"""
Device management, scoped by tenant.

Every lookup takes a ``scope`` (organization id, or None for an
administrator). A device outside the caller's scope is reported exactly
like a missing one so its existence never leaks across tenants.

CHANGELOG:
- 2026-10-17: Resolve device references by name before id; add heartbeats
- 2026-10-17: Add is_online to the device listing
- 2026-10-17: Initial creation

TODO:
- None
"""

import datetime
import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.db.models import Device, as_utc
from solarmon.errors import ConflictError, NotFoundError, StorageError, ValidationError
from solarmon.services.bus import LiveEvent
from solarmon.services.organizations import get_organization
from solarmon.services.settings_store import get_int_setting

logger = logging.getLogger(__name__)

DEFAULT_DATA_INTERVAL_S = 300


def device_to_dict(device: Device, is_online: bool | None = None) -> dict:
    last_seen = as_utc(device.last_seen)
    body = {
        "id": device.id,
        "name": device.name,
        "organization_id": device.organization_id,
        "ip_address": device.ip_address,
        "description": device.description,
        "is_active": device.is_active,
        "last_seen": last_seen.isoformat() if last_seen else None,
    }
    if is_online is not None:
        body["is_online"] = is_online
    return body


def is_online(
    device: Device, data_interval_s: int, now: datetime.datetime | None = None
) -> bool:
    """Whether the device submitted within the last two data intervals."""
    last_seen = as_utc(device.last_seen)
    if last_seen is None:
        return False
    now = now or datetime.datetime.now(datetime.UTC)
    return now - last_seen <= datetime.timedelta(seconds=2 * data_interval_s)


def _scoped(stmt, scope: int | None):
    if scope is not None:
        stmt = stmt.where(Device.organization_id == scope)
    return stmt


async def get_device(db: AsyncSession, device_id: int, scope: int | None) -> Device:
    """Return a device visible to *scope*.

    Raises:
        NotFoundError: If the device does not exist or is out of scope.
    """
    stmt = _scoped(select(Device).where(Device.id == device_id), scope)
    result = await db.execute(stmt)
    device = result.scalar_one_or_none()
    if device is None:
        raise NotFoundError(f"Device {device_id} not found.", identifier=device_id)
    return device


async def get_device_by_name(db: AsyncSession, name: str, scope: int | None) -> Device:
    """Return the device called *name* visible to *scope*.

    Raises:
        NotFoundError: If the device does not exist or is out of scope.
    """
    stmt = _scoped(select(Device).where(Device.name == name), scope)
    result = await db.execute(stmt)
    device = result.scalar_one_or_none()
    if device is None:
        raise NotFoundError(f"Device '{name}' not found.", identifier=name)
    return device


async def resolve_device_ref(db: AsyncSession, ref: str, scope: int | None) -> Device:
    """Look a device up by name, falling back to its id for a numeric *ref*.

    Names win, so a device whose name is all digits (a serial number, say)
    stays reachable by that name.

    Raises:
        NotFoundError: If neither lookup finds a device visible to *scope*.
    """
    try:
        return await get_device_by_name(db, ref, scope)
    except NotFoundError:
        if not ref.isdigit():
            raise
    return await get_device(db, int(ref), scope)


async def list_devices(db: AsyncSession, scope: int | None) -> list[dict]:
    """List devices visible to *scope* with their informational online flag."""
    interval = await get_int_setting(db, "data_interval", DEFAULT_DATA_INTERVAL_S)
    result = await db.execute(_scoped(select(Device).order_by(Device.name), scope))
    now = datetime.datetime.now(datetime.UTC)
    return [
        device_to_dict(device, is_online(device, interval, now))
        for device in result.scalars().all()
    ]


async def create_device(
    db: AsyncSession,
    name: str,
    organization_id: int,
    ip_address: str | None = None,
    description: str | None = None,
) -> Device:
    """Register a device under an organization.

    Raises:
        ValidationError: If *name* is empty.
        NotFoundError: If the organization does not exist.
        ConflictError: If a device with that name exists in any tenant.
        StorageError: On any other persistence failure.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Device name must not be empty.", field="name")
    await get_organization(db, organization_id)

    device = Device(
        name=name,
        organization_id=organization_id,
        ip_address=ip_address,
        description=description,
    )
    db.add(device)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            f"Device '{name}' already exists.", field="name", identifier=name
        ) from exc
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to create device %s", name, exc_info=True)
        raise StorageError("Failed to create device.") from exc

    logger.info(
        "Created device %s (id=%d) in organization %d",
        name,
        device.id,
        organization_id,
    )
    return device


async def update_device(
    db: AsyncSession,
    device_id: int,
    scope: int | None,
    *,
    ip_address: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> Device:
    """Update the mutable device fields that are not None."""
    device = await get_device(db, device_id, scope)
    if ip_address is not None:
        device.ip_address = ip_address
    if description is not None:
        device.description = description
    if is_active is not None:
        device.is_active = is_active
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to update device %d", device_id, exc_info=True)
        raise StorageError(
            f"Failed to update device {device_id}.", identifier=device_id
        ) from exc
    return device


async def record_heartbeat(
    db: AsyncSession,
    name: str,
    ip_address: str | None = None,
    description: str | None = None,
) -> Device:
    """Record a field device announcing itself by name.

    Only devices registered beforehand are accepted. Fields that are not
    None replace the stored ones and ``last_seen`` moves to now.

    Raises:
        ValidationError: If *name* is empty.
        NotFoundError: If no device has that name.
        StorageError: On persistence failure.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Device name must not be empty.", field="name")
    device = await get_device_by_name(db, name, None)
    if ip_address is not None:
        device.ip_address = ip_address
    if description is not None:
        device.description = description
    device.last_seen = datetime.datetime.now(datetime.UTC)
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to record heartbeat of device %s", name, exc_info=True)
        raise StorageError(
            f"Failed to update device '{name}'.", identifier=name
        ) from exc
    logger.info("Heartbeat from device %s (ip=%s)", name, device.ip_address)
    return device


async def delete_device(db: AsyncSession, device_id: int, scope: int | None) -> Device:
    """Delete a device; sensors, configurations and samples go with it.

    Returns:
        Device: The deleted (now detached) device, for event payloads.
    """
    device = await get_device(db, device_id, scope)
    await db.execute(delete(Device).where(Device.id == device_id))
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to delete device %d", device_id, exc_info=True)
        raise StorageError(
            f"Failed to delete device {device_id}.", identifier=device_id
        ) from exc
    logger.info("Deleted device %s (id=%d)", device.name, device_id)
    return device


def device_updated_event(action: str, organization_id: int, data: dict) -> LiveEvent:
    """Build the ``device_updated`` event announcing a catalog change."""
    return LiveEvent(
        type="device_updated",
        tenant_id=organization_id,
        data={"action": action, **data},
    )
