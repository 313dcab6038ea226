"""
Health check endpoint.

GET /api/health returns the service status, server time, uptime and the
number of connected live subscribers. No authentication is required;
intended for container health checks and internal monitoring.

CHANGELOG:
- 2026-10-17: Report uptime and live subscriber count
- 2026-10-17: Initial creation
"""

import time
from datetime import UTC, datetime

from fastapi import APIRouter, Request

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    """Return a simple health status.

    Returns:
        dict: ``status``, ``timestamp``, ``uptime_s`` and ``live_subscribers``.
    """
    state = request.app.state
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime_s": round(time.monotonic() - state.started_at, 3),
        "live_subscribers": state.bus.subscriber_count,
    }
