import asyncio
import json
import logging
from typing import Optional

from .models import BridgeEvent


class FanoutPublisher:
    """
    Delivers bridge events to one downstream subscriber.

    Producers enqueue into a bounded queue; a single writer task drains it onto
    the subscriber's websocket. A full queue makes producers wait for that
    subscriber only.
    """

    def __init__(self, websocket, maxsize: int = 100, logger: Optional[logging.Logger] = None):
        self.websocket = websocket
        self.logger = logger or logging.getLogger("FanoutPublisher")
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self.sent_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: BridgeEvent) -> None:
        if self._closed:
            return
        await self._queue.put(event)

    async def send_now(self, event: BridgeEvent) -> bool:
        """Send directly, bypassing the queue. Returns False if the subscriber is gone."""
        try:
            await self.websocket.send_text(json.dumps(event.model_dump()))
        except Exception as e:
            # Starlette raises WebSocketDisconnect or RuntimeError once the peer is gone
            if self.logger.isEnabledFor(logging.DEBUG):
                self.logger.debug(f"Failed to send {event.type} event: {e}")
            return False
        self.sent_count += 1
        return True

    async def run(self) -> None:
        """Drain the queue until the subscriber goes away or the publisher is closed."""
        while True:
            event = await self._queue.get()
            if not await self.send_now(event):
                self._closed = True
                return

    def close(self) -> None:
        self._closed = True
