"""
Shared test fixtures for the telemetry service tests.

Every test runs against a fresh SQLite database file (aiosqlite) in the
pytest tmp_path, so services and endpoints exercise real SQL including the
ON DELETE CASCADE rules. Environment variables are set to test values so
the application can start without PostgreSQL or Redis.

Tokens configured for API tests:
- ``admin-token``: administrator of organization 1
- ``user-a``: user of organization 1
- ``viewer-a``: viewer of organization 1
- ``user-b``: user of organization 2

CHANGELOG:
- 2026-10-17: Run against a temporary SQLite database instead of mocks
- 2026-10-17: Initial creation
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from solarmon.db import session as db_session
from solarmon.db.models import Base
from solarmon.services.bus import EventBus
from solarmon.services.catalog import (
    DecodingParams,
    create_sensor,
    set_decoding_configuration,
)
from solarmon.services.devices import create_device
from solarmon.services.organizations import create_organization

ADMIN = {"Authorization": "Bearer admin-token"}
USER_A = {"Authorization": "Bearer user-a"}
VIEWER_A = {"Authorization": "Bearer viewer-a"}
USER_B = {"Authorization": "Bearer user-b"}

API_TOKENS = "admin-token:1:admin,user-a:1:user,viewer-a:1:viewer,user-b:2:user"


@pytest.fixture()
def database_url(tmp_path: Path) -> str:
    """Return a sqlite+aiosqlite URL for a file in the test's tmp dir."""
    return f"sqlite+aiosqlite:///{tmp_path / 'telemetry.db'}"


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch, database_url: str) -> None:
    """Set required environment variables for testing.

    These are test-only values that allow the FastAPI app to start
    against a throwaway SQLite database with the cache disabled.
    """
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("API_TOKENS", API_TOKENS)
    monkeypatch.setenv("AUTO_CREATE_SCHEMA", "true")
    monkeypatch.delenv("REDIS_URL", raising=False)
    monkeypatch.delenv("AUTO_REGISTER_DEVICES", raising=False)


@pytest_asyncio.fixture()
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Create the schema on a fresh database and yield its engine."""
    engine = db_session.create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the test database."""
    factory = db_session.create_session_factory(engine)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture()
async def seeded(db: AsyncSession) -> dict[str, int]:
    """Seed two tenants, one device each and a few sensors.

    Layout:
        Acme (org 1) -> D1 -> RAD (unsigned16 x1, W/m²), TEMP (physical, °C)
        Beta (org 2) -> D2 -> RAD (physical, W/m²)

    Returns:
        dict[str, int]: Ids keyed by ``acme``, ``beta``, ``d1``, ``d2``,
        ``d1_rad``, ``d1_temp`` and ``d2_rad``.
    """
    acme = await create_organization(db, "Acme")
    beta = await create_organization(db, "Beta")
    d1 = await create_device(db, "D1", acme.id)
    d2 = await create_device(db, "D2", beta.id)
    d1_rad = await create_sensor(db, d1.id, "RAD", "radiation", "W/m²")
    d1_temp = await create_sensor(db, d1.id, "TEMP", "temperature", "°C")
    d2_rad = await create_sensor(db, d2.id, "RAD", "radiation", "W/m²")
    await set_decoding_configuration(
        db,
        d1_rad.id,
        DecodingParams(address=0, register_kind="input", encoding="unsigned16"),
    )
    return {
        "acme": acme.id,
        "beta": beta.id,
        "d1": d1.id,
        "d2": d2.id,
        "d1_rad": d1_rad.id,
        "d1_temp": d1_temp.id,
        "d2_rad": d2_rad.id,
    }


@pytest.fixture()
def bus() -> EventBus:
    """Return a fresh live distribution bus."""
    return EventBus(queue_size=8)


@pytest.fixture()
def mock_cache() -> AsyncMock:
    """Create a mock latest-value cache that always misses.

    Returns:
        AsyncMock: A stand-in for LatestCache.
    """
    cache = AsyncMock()
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock()
    cache.invalidate = AsyncMock()
    return cache


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    """Create a FastAPI TestClient for integration testing.

    Uses a context manager to ensure the application lifespan events
    (startup/shutdown) are properly triggered. Environment variables
    are already set by the _set_test_env autouse fixture.

    Yields:
        TestClient: Configured test client for the FastAPI app.
    """
    from solarmon.api.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def api_seeded(client: TestClient) -> dict[str, int]:
    """Seed the running app through its own endpoints.

    Creates Acme (org 1) with device D1 carrying a RAD sensor decoded as
    unsigned16, and Beta (org 2) with device D2.

    Returns:
        dict[str, int]: Ids keyed by ``d1``, ``d2`` and ``rad``.
    """
    for name in ("Acme", "Beta"):
        response = client.post(
            "/api/admin/organizations", json={"name": name}, headers=ADMIN
        )
        assert response.status_code == 201
    d1 = client.post("/api/devices", json={"name": "D1"}, headers=USER_A).json()
    d2 = client.post("/api/devices", json={"name": "D2"}, headers=USER_B).json()
    rad = client.post(
        f"/api/devices/{d1['id']}/sensors",
        json={"name": "RAD", "sensor_type": "radiation", "unit": "W/m²"},
        headers=USER_A,
    ).json()
    response = client.put(
        f"/api/sensors/{rad['id']}/decoding",
        json={"address": 0, "register_kind": "input", "encoding": "unsigned16"},
        headers=USER_A,
    )
    assert response.status_code == 200
    return {"d1": d1["id"], "d2": d2["id"], "rad": rad["id"]}
