"""
FastAPI dependency injection providers.

Provides database sessions, the caller's Principal, role guards, and the
lifespan-owned bus, cache and settings for use with FastAPI's Depends()
mechanism.

CHANGELOG:
- 2026-10-17: Add principal and role guard dependencies
- 2026-10-17: Initial creation
"""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from solarmon.auth.bearer import Principal
from solarmon.cache.redis_client import LatestCache
from solarmon.config import ServiceSettings
from solarmon.db.session import get_async_session
from solarmon.services.bus import EventBus


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session.

    Yields:
        AsyncSession: An async SQLAlchemy session.
    """
    async for session in get_async_session():
        yield session


async def get_principal(request: Request) -> Principal:
    """Authenticate the caller via the BearerAuth stored on app.state."""
    return await request.app.state.auth.verify(request)


async def require_writer(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    """Reject read-only (viewer) principals with 403."""
    if not principal.can_write:
        raise HTTPException(status_code=403, detail="Read-only role.")
    return principal


async def require_admin(
    principal: Annotated[Principal, Depends(get_principal)],
) -> Principal:
    """Reject non-administrators with 403."""
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Administrator role required.")
    return principal


def get_settings(request: Request) -> ServiceSettings:
    return request.app.state.config


def get_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_cache(request: Request) -> LatestCache:
    return request.app.state.cache


DbSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPrincipal = Annotated[Principal, Depends(get_principal)]
Writer = Annotated[Principal, Depends(require_writer)]
Admin = Annotated[Principal, Depends(require_admin)]
Settings = Annotated[ServiceSettings, Depends(get_settings)]
Bus = Annotated[EventBus, Depends(get_bus)]
Cache = Annotated[LatestCache, Depends(get_cache)]
