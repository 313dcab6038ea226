"""
WebSocket /ws endpoint streaming live events to dashboards.

Browsers cannot set headers on a WebSocket upgrade, so the bearer token is
passed as ``?token=``. The subscription is scoped to the caller's
organization (administrators receive everything) and is registered before
the handshake completes, so no event published after a successful connect
is missed.

Two loops run per connection in one AnyIO task group: one forwards bus
events to the socket, the other waits for the client to disconnect.
Whichever finishes first cancels the group and the subscriber is removed.
A subscriber dropped by the bus for falling behind is closed with 1013
(try again later); reconnecting is the client's job and missed events are
not replayed.

CHANGELOG:
- 2026-10-17: Run both connection loops in an AnyIO task group
- 2026-10-17: Initial creation

TODO:
- None
"""

import logging

import anyio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from solarmon.services.bus import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["live"])


async def _forward_events(websocket: WebSocket, subscription: Subscription) -> None:
    async for event in subscription:
        await websocket.send_json(event.to_message())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _serve(websocket: WebSocket, subscription: Subscription) -> bool:
    """Run both loops until one ends.

    Returns:
        bool: True when the client went away, False when the event stream
        ended first (bus closed or subscriber dropped).
    """
    client_left = False

    async with anyio.create_task_group() as group:

        async def forward() -> None:
            nonlocal client_left
            try:
                await _forward_events(websocket, subscription)
            except (WebSocketDisconnect, RuntimeError) as exc:
                logger.info("Live connection ended with %r", exc)
                client_left = True
            group.cancel_scope.cancel()

        async def watch() -> None:
            nonlocal client_left
            await _wait_for_disconnect(websocket)
            client_left = True
            group.cancel_scope.cancel()

        group.start_soon(forward)
        group.start_soon(watch)

    return client_left


@router.websocket("/ws")
async def live(websocket: WebSocket, token: str | None = None) -> None:
    """Stream type-tagged ``{"type", "ts", "data"}`` events to the client."""
    principal = websocket.app.state.auth.resolve(token)
    if principal is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    bus = websocket.app.state.bus
    subscription = bus.subscribe(principal.scope)
    try:
        await websocket.accept()
        client_left = await _serve(websocket, subscription)
        if not client_left:
            code = (
                status.WS_1013_TRY_AGAIN_LATER
                if subscription.dropped
                else status.WS_1001_GOING_AWAY
            )
            await websocket.close(code=code)
    finally:
        bus.unsubscribe(subscription)
