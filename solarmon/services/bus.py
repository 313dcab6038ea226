"""
Live distribution bus: in-process fan-out of ingestion and configuration
events to connected real-time subscribers.

Each subscriber owns a bounded asyncio.Queue. ``publish`` never awaits: it
``put_nowait``s into every matching queue and drops (closes) any subscriber
whose queue is full, so a slow or dead client can never hold up ingestion.

Events carry the tenant they belong to. A subscriber opened with a tenant id
only sees events for that tenant plus process-wide events (tenant ``None``);
a subscriber opened without one (administrator) sees everything.

The registry is owned by the application lifespan (``app.state.bus``) and
all calls happen on the event loop thread.

CHANGELOG:
- 2026-10-17: Filter events by tenant at subscription time
- 2026-10-17: Initial creation

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

logger = logging.getLogger(__name__)

EventType = Literal["sample_ingested", "device_updated", "setting_updated"]

_CLOSED = object()


@dataclass(frozen=True)
class LiveEvent:
    """A type-tagged event delivered to live subscribers.

    Attributes:
        type: Event discriminator.
        tenant_id: Owning organization, or None for process-wide events.
        data: JSON-serialisable payload.
        ts: Server time the event was created.
    """

    type: EventType
    tenant_id: int | None
    data: dict[str, Any]
    ts: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_message(self) -> dict[str, Any]:
        """Return the JSON message sent over the wire."""
        return {"type": self.type, "ts": self.ts.isoformat(), "data": self.data}


class Subscription:
    """Receiving end of the bus for one client.

    Iterate with ``async for event in subscription``; iteration ends when the
    subscriber is dropped or the bus is closed.
    """

    def __init__(self, tenant_id: int | None, queue_size: int) -> None:
        self.tenant_id = tenant_id
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._closed = False
        self.dropped = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: LiveEvent) -> bool:
        """Whether *event* is visible to this subscriber."""
        if self.tenant_id is None or event.tenant_id is None:
            return True
        return event.tenant_id == self.tenant_id

    def offer(self, event: LiveEvent) -> bool:
        """Enqueue without blocking. Returns False when the buffer is full."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            return False
        return True

    def close(self) -> None:
        """Mark closed and wake a consumer waiting on an empty queue."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            # Consumer is not waiting; it stops after draining.
            pass

    async def get(self) -> LiveEvent:
        """Return the next event.

        Raises:
            StopAsyncIteration: Once the subscription is closed and drained.
        """
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> LiveEvent:
        return await self.get()


class EventBus:
    """Process-wide registry of live subscribers.

    Attributes:
        queue_size: Buffer size given to every new subscription.
    """

    def __init__(self, queue_size: int = 256) -> None:
        self.queue_size = queue_size
        self._subscribers: set[Subscription] = set()
        self._closed = False

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, tenant_id: int | None = None) -> Subscription:
        """Register a new receiver. Never blocks.

        Args:
            tenant_id: Organization to filter on, or None for all events.

        Returns:
            Subscription: The new subscriber handle.
        """
        sub = Subscription(tenant_id, self.queue_size)
        if self._closed:
            sub.close()
            return sub
        self._subscribers.add(sub)
        logger.info(
            "Live subscriber added (tenant=%s, total=%d)",
            tenant_id,
            len(self._subscribers),
        )
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """Remove *sub* from the registry and close it."""
        if sub in self._subscribers:
            self._subscribers.discard(sub)
            logger.info(
                "Live subscriber removed (tenant=%s, total=%d)",
                sub.tenant_id,
                len(self._subscribers),
            )
        sub.close()

    def publish(self, event: LiveEvent) -> int:
        """Deliver *event* to every matching subscriber without blocking.

        Subscribers whose buffer is full are dropped from the registry.

        Returns:
            int: Number of subscribers the event was delivered to.
        """
        delivered = 0
        for sub in list(self._subscribers):
            if not sub.accepts(event):
                continue
            if sub.offer(event):
                delivered += 1
                continue
            logger.warning(
                "Dropping slow live subscriber (tenant=%s, buffer=%d)",
                sub.tenant_id,
                self.queue_size,
            )
            sub.dropped = True
            self._subscribers.discard(sub)
            sub.close()
        return delivered

    def close(self) -> None:
        """Close every subscriber. Called on application shutdown."""
        self._closed = True
        for sub in list(self._subscribers):
            sub.close()
        self._subscribers.clear()
