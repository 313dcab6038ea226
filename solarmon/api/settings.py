"""
Settings endpoints.

Any authenticated caller may read settings; only administrators may change
them. Changes are broadcast to every live subscriber as
``setting_updated``.

CHANGELOG:
- 2026-10-17: Initial creation
"""

from fastapi import APIRouter
from pydantic import BaseModel

from solarmon.api.deps import Admin, Bus, CurrentPrincipal, DbSession
from solarmon.services import settings_store

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingUpdate(BaseModel):
    value: str
    description: str | None = None


@router.get("")
async def list_settings(db: DbSession, principal: CurrentPrincipal) -> list[dict]:
    return [
        settings_store.setting_to_dict(s)
        for s in await settings_store.list_settings(db)
    ]


@router.get("/{key}")
async def get_setting(key: str, db: DbSession, principal: CurrentPrincipal) -> dict:
    setting = await settings_store.get_setting(db, key)
    return settings_store.setting_to_dict(setting)


@router.put("/{key}")
async def put_setting(
    key: str, body: SettingUpdate, db: DbSession, principal: Admin, bus: Bus
) -> dict:
    setting = await settings_store.update_setting(
        db, key, body.value, body.description, bus=bus
    )
    return settings_store.setting_to_dict(setting)
