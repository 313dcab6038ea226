"""
Process-wide key/value settings.

Settings are seeded with defaults at first startup (insert-if-missing, so
operator changes survive restarts), mutated by administrators, and read by
the device listing for the informational online check.

CHANGELOG:
- 2026-10-17: Initial creation
"""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.db.models import Setting
from solarmon.errors import NotFoundError, StorageError, ValidationError
from solarmon.services.bus import EventBus, LiveEvent

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, tuple[str, str]] = {
    "data_interval": ("300", "Expected seconds between device submissions"),
    "retention_days": ("365", "Days of sample history to keep"),
    "alarm_radiation_max": ("1500", "Radiation alarm threshold (W/m2)"),
    "alarm_temp_max": ("70", "Temperature alarm threshold (C)"),
    "timezone": ("Europe/Istanbul", "Display timezone"),
}


def setting_to_dict(setting: Setting) -> dict:
    return {
        "key": setting.key,
        "value": setting.value,
        "description": setting.description,
    }


async def seed_defaults(db: AsyncSession) -> int:
    """Insert default settings that do not exist yet.

    Returns:
        int: Number of rows inserted.
    """
    result = await db.execute(select(Setting.key))
    existing = set(result.scalars().all())
    missing = [key for key in DEFAULT_SETTINGS if key not in existing]
    for key in missing:
        value, description = DEFAULT_SETTINGS[key]
        db.add(Setting(key=key, value=value, description=description))
    if missing:
        try:
            await db.commit()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Failed to seed default settings", exc_info=True)
            raise StorageError("Failed to seed default settings.") from exc
        logger.info("Seeded %d default setting(s)", len(missing))
    return len(missing)


async def list_settings(db: AsyncSession) -> list[Setting]:
    result = await db.execute(select(Setting).order_by(Setting.key))
    return list(result.scalars().all())


async def get_setting(db: AsyncSession, key: str) -> Setting:
    """Return the setting stored under *key*.

    Raises:
        NotFoundError: If no such setting exists.
    """
    setting = await db.get(Setting, key)
    if setting is None:
        raise NotFoundError(f"Setting '{key}' not found.", identifier=key)
    return setting


async def get_int_setting(db: AsyncSession, key: str, default: int) -> int:
    """Return an integer setting, falling back to *default* when missing or invalid."""
    setting = await db.get(Setting, key)
    if setting is None:
        return default
    try:
        return int(setting.value)
    except ValueError:
        logger.warning(
            "Setting %s has non-integer value %r, using %d",
            key,
            setting.value,
            default,
        )
        return default


async def update_setting(
    db: AsyncSession,
    key: str,
    value: str,
    description: str | None = None,
    *,
    bus: EventBus | None = None,
) -> Setting:
    """Create or replace a setting and announce the change on the bus.

    Args:
        db: Async database session.
        key: Setting key.
        value: New value (stored as text).
        description: New description; the existing one is kept when None.
        bus: Live distribution bus; ``setting_updated`` is published to
            every subscriber after commit.

    Returns:
        Setting: The stored row.

    Raises:
        ValidationError: If *key* is blank.
        StorageError: If the write fails.
    """
    key = key.strip()
    if not key:
        raise ValidationError("Setting key must not be empty.", field="key")

    setting = await db.get(Setting, key)
    if setting is None:
        setting = Setting(key=key, value=value, description=description)
        db.add(setting)
    else:
        setting.value = value
        if description is not None:
            setting.description = description
    try:
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to update setting %s", key, exc_info=True)
        raise StorageError(
            f"Failed to update setting '{key}'.", identifier=key
        ) from exc

    logger.info("Setting %s updated", key)
    if bus is not None:
        bus.publish(
            LiveEvent(
                type="setting_updated",
                tenant_id=None,
                data={"key": key, "value": value},
            )
        )
    return setting
