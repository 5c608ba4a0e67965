import asyncio
import json
from typing import Any, AsyncGenerator, Dict

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from api.dependencies import get_bridge
from app.events import EventBus

router = APIRouter()

PING_INTERVAL_SECONDS = 15.0
RETRY_MS = 3000


async def local_event_stream(
    bus: EventBus, ping_interval: float = PING_INTERVAL_SECONDS
) -> AsyncGenerator[Dict[str, Any], None]:
    """Relay local bus events; the subscription is released when the client leaves."""
    async with bus.subscribe() as subscription:
        yield {"data": json.dumps({"type": "ping"}), "retry": RETRY_MS}
        while True:
            try:
                event = await asyncio.wait_for(subscription.get(), ping_interval)
            except asyncio.TimeoutError:
                event = {"type": "ping"}
            yield {"data": json.dumps(event)}


@router.get("/stream", summary="Stream local change notifications")
async def stream_local_events(bridge=Depends(get_bridge)):
    return EventSourceResponse(local_event_stream(bridge.event_bus))
