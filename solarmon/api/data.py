"""
Historical query endpoints: sample ranges, statistics and CSV export.

All three accept the same optional filters (``device_id``, ``sensor_id``,
``start_date``, ``end_date``) and are scoped to the caller's organization.

CHANGELOG:
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging
import time
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response

from solarmon.api.deps import CurrentPrincipal, DbSession, Settings
from solarmon.errors import ValidationError
from solarmon.services.queries import (
    SampleFilters,
    export_csv,
    range_query,
    statistics,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["data"])


def _filters(
    device_id: Annotated[int | None, Query()] = None,
    sensor_id: Annotated[int | None, Query()] = None,
    start_date: Annotated[datetime | None, Query()] = None,
    end_date: Annotated[datetime | None, Query()] = None,
    limit: Annotated[int | None, Query()] = None,
) -> SampleFilters:
    """Build SampleFilters from the query string."""
    return SampleFilters(
        device_id=device_id,
        sensor_id=sensor_id,
        start=start_date,
        end=end_date,
        limit=limit,
    )


Filters = Annotated[SampleFilters, Depends(_filters)]


@router.get("/sensor-data")
async def get_samples(
    filters: Filters, db: DbSession, principal: CurrentPrincipal, settings: Settings
) -> list[dict]:
    """Return matching samples, newest first.

    Raises:
        ValidationError: If ``limit`` is outside 1..MAX_QUERY_LIMIT.
    """
    if filters.limit is not None and filters.limit > settings.max_query_limit:
        raise ValidationError(
            f"limit must be <= {settings.max_query_limit}.", field="limit"
        )
    return await range_query(
        db, filters, principal.scope, default_limit=settings.default_query_limit
    )


@router.get("/statistics")
async def get_statistics(
    filters: Filters, db: DbSession, principal: CurrentPrincipal
) -> list[dict]:
    """Return count/min/max/avg per sensor, or one row for ``sensor_id``."""
    return await statistics(db, filters, principal.scope)


@router.get("/export/csv")
async def get_csv(
    filters: Filters, db: DbSession, principal: CurrentPrincipal
) -> Response:
    """Download every matching sample as CSV."""
    content = await export_csv(db, filters, principal.scope)
    filename = f"sensor-data-{int(time.time() * 1000)}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
