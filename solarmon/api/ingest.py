"""
Ingestion endpoints for field devices.

POST /api/sensor-data accepts ``{"device_name": ..., "data": [...]}`` where
each entry is ``{"sensor_name", "value"}`` or ``{"sensor_name",
"registers"}``. POST /api/sensor-data/simple accepts the fixed
``radiation``/``temperature1``/``temperature2`` fields. Both are open
endpoints: the device identifies itself by name.

Request body size and batch size limits are enforced before parsing.

CHANGELOG:
- 2026-10-17: Add the fixed-field variant
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from solarmon.api.deps import Bus, Cache, DbSession, Settings
from solarmon.services.ingestion import (
    IngestResult,
    Reading,
    ingest_fixed_fields,
    ingest_readings,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["ingest"])


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ReadingIn(BaseModel):
    """One named reading: a number, or raw register words high word first."""

    sensor_name: str
    value: float | None = None
    registers: list[int] | None = None


class IngestPayload(BaseModel):
    """Batch payload for the rich ingestion endpoint."""

    device_name: str
    data: list[ReadingIn]


class SimplePayload(BaseModel):
    """Fixed-field payload for the simple ingestion endpoint."""

    device_name: str
    radiation: float | None = None
    temperature1: float | None = None
    temperature2: float | None = None


class IngestResponse(BaseModel):
    """Response from both ingestion endpoints."""

    success: bool = True
    device_id: int
    accepted: int
    dropped: list[dict]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _read_body(request: Request, max_request_bytes: int) -> bytes:
    """Return the request body, enforcing the configured size limit.

    Raises:
        HTTPException: 400 on a malformed Content-Length, 413 when the body
            exceeds the limit.
    """
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            content_length_int = int(content_length)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail="Invalid Content-Length header.",
            ) from None
        if content_length_int > max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
            )

    body = await request.body()
    if len(body) > max_request_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"Request body exceeds limit of {max_request_bytes} bytes.",
        )
    return body


def _response(result: IngestResult) -> IngestResponse:
    return IngestResponse(
        device_id=result.device_id,
        accepted=result.accepted,
        dropped=result.dropped,
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.post("/sensor-data", response_model=IngestResponse)
async def ingest(
    request: Request,
    db: DbSession,
    settings: Settings,
    bus: Bus,
    cache: Cache,
):
    """Ingest a batch of named sensor readings from a field device.

    Returns:
        IngestResponse: Accepted count and the readings that were dropped.

    Raises:
        HTTPException: 413 if the body or the batch exceeds its limit.
    """
    body = await _read_body(request, settings.max_request_bytes)

    try:
        payload = IngestPayload.model_validate_json(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(include_url=False, include_context=False)},
        )

    max_readings = settings.max_readings_per_request
    if len(payload.data) > max_readings:
        raise HTTPException(
            status_code=413,
            detail=f"Batch size {len(payload.data)} exceeds limit of "
            f"{max_readings}. Split into smaller batches.",
        )

    readings = [
        Reading(
            sensor_name=item.sensor_name,
            value=item.value,
            registers=tuple(item.registers) if item.registers is not None else None,
        )
        for item in payload.data
    ]
    result = await ingest_readings(
        db,
        payload.device_name,
        readings,
        bus=bus,
        cache=cache,
        auto_register=settings.auto_register_devices,
        auto_register_organization=settings.auto_register_organization,
    )
    return _response(result)


@router.post("/sensor-data/simple", response_model=IngestResponse)
async def ingest_simple(
    request: Request,
    db: DbSession,
    settings: Settings,
    bus: Bus,
    cache: Cache,
):
    """Ingest one radiation/temperature submission from a field device."""
    body = await _read_body(request, settings.max_request_bytes)

    try:
        payload = SimplePayload.model_validate_json(body)
    except ValidationError as exc:
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(include_url=False, include_context=False)},
        )

    result = await ingest_fixed_fields(
        db,
        payload.device_name,
        radiation=payload.radiation,
        temperature1=payload.temperature1,
        temperature2=payload.temperature2,
        bus=bus,
        cache=cache,
        auto_register=settings.auto_register_devices,
        auto_register_organization=settings.auto_register_organization,
    )
    return _response(result)
