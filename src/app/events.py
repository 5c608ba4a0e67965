"""
Local event bus.

Notifies local UI listeners (the /api/stream endpoint) about local changes.
The bus lives as long as the server that owns it; each listener holds a
Subscription that is released when the listener goes away.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set


class Subscription:
    """Scoped handle on the bus; use as an async context manager."""

    def __init__(self, bus: "EventBus", maxsize: int):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, event: Dict[str, Any]) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            return False

    async def get(self) -> Dict[str, Any]:
        return await self._queue.get()

    def close(self) -> None:
        self._bus.unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


class EventBus:
    def __init__(self, maxsize: int = 100, logger: Optional[logging.Logger] = None):
        self.maxsize = maxsize
        self.logger = logger or logging.getLogger("EventBus")
        self._subscriptions: Set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self, self.maxsize)
        self._subscriptions.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: Dict[str, Any]) -> int:
        """Offer an event to every listener; slow listeners drop it. Returns deliveries."""
        delivered = 0
        for subscription in list(self._subscriptions):
            if subscription._offer(event):
                delivered += 1
            else:
                self.logger.warning(f"Listener queue full, dropped {event.get('type')} event")
        return delivered

    def close(self) -> None:
        self._subscriptions.clear()
