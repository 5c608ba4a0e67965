import asyncio
from contextlib import aclosing
from typing import Any, AsyncGenerator, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from api.dependencies import get_bridge
from api.models.schemas import HistoryResponse, SendRequest, SendResponse, SyncResponse
from app.models import ChatEvent, ErrorEvent
from gateway.connection import fetch_sessions_once
from gateway.errors import (
    GatewayConfigError,
    GatewayError,
    GatewayTimeoutError,
    ToolInvocationError,
)
from gateway.protocol import ChatMessage, SessionSummary
from gateway.reconciler import SessionReconciler

router = APIRouter()

MISSING_TOKEN = "missing gateway token"


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"ok": False, "error": message}, status_code=status_code)


def gateway_error_response(error: Exception) -> JSONResponse:
    if isinstance(error, ToolInvocationError):
        return error_response(error.body, error.status_code)
    if isinstance(error, GatewayConfigError):
        return error_response(str(error), status.HTTP_500_INTERNAL_SERVER_ERROR)
    if isinstance(error, GatewayTimeoutError):
        return error_response(str(error), status.HTTP_504_GATEWAY_TIMEOUT)
    return error_response(str(error), status.HTTP_502_BAD_GATEWAY)


def resolve_column(session: SessionSummary) -> str:
    """Board column for a session, from its token count and last speaker."""
    if session.totalTokens == 0:
        return "backlog"
    if session.lastRole == "user":
        return "doing"
    if session.lastRole == "assistant":
        return "review"
    return "backlog"


@router.get("/history", response_model=HistoryResponse, summary="Message history of a session")
async def get_history(
    sessionKey: Optional[str] = None,
    limit: int = 80,
    bridge=Depends(get_bridge),
):
    if not bridge.settings.has_token:
        return error_response(MISSING_TOKEN, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if not sessionKey:
        return error_response("missing sessionKey", status.HTTP_400_BAD_REQUEST)

    try:
        messages = await bridge.tools.fetch_history(sessionKey, limit=limit, include_tools=True)
    except (GatewayError, httpx.HTTPError) as e:
        bridge.logger.error(f"History lookup failed for {sessionKey}: {e}")
        return gateway_error_response(e)

    messages.sort(key=lambda message: message.get("createdAt") or 0)
    return {"ok": True, "messages": messages}


@router.post("/send", response_model=SendResponse, summary="Send a message into a session")
async def send_message(request: SendRequest, bridge=Depends(get_bridge)):
    if not bridge.settings.has_token:
        return error_response(MISSING_TOKEN, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if not request.sessionKey or not (request.message or "").strip():
        return error_response("missing sessionKey or message", status.HTTP_400_BAD_REQUEST)

    try:
        result = await bridge.tools.send_message(
            request.sessionKey,
            request.message,
            delivery_context=request.deliveryContext,
            channel=request.channel,
            last_channel=request.lastChannel,
        )
    except (GatewayError, httpx.HTTPError) as e:
        bridge.logger.error(f"Send to {request.sessionKey} failed: {e}")
        return gateway_error_response(e)

    return {"ok": True, "result": result}


@router.get("/sync", response_model=SyncResponse, summary="List, enrich and classify sessions")
async def sync_sessions(fallback: bool = True, bridge=Depends(get_bridge)):
    settings = bridge.settings
    if not settings.has_token:
        return error_response(MISSING_TOKEN, status.HTTP_500_INTERNAL_SERVER_ERROR)

    try:
        raw_sessions = await fetch_sessions_once(
            bridge.new_connection(),
            timeout=settings.handshake_timeout,
            limit=settings.sessions_limit,
        )
    except GatewayError as e:
        if not fallback:
            return gateway_error_response(e)
        bridge.logger.warning(f"Streaming session list failed, using sessions_list tool: {e}")
        try:
            raw_sessions = await bridge.tools.list_sessions()
        except (GatewayError, httpx.HTTPError) as tool_error:
            return gateway_error_response(tool_error)

    reconciler = SessionReconciler(bridge.tools.fetch_last_message, logger=bridge.logger)
    board = []
    for session in await reconciler.reconcile(raw_sessions):
        if not session.key:
            continue
        entry = session.to_wire()
        entry["column"] = resolve_column(session)
        board.append(entry)

    bridge.event_bus.publish({"type": "sessions_synced", "count": len(board)})
    return {"ok": True, "count": len(raw_sessions), "sessions": board}


async def chat_event_stream(bridge) -> AsyncGenerator[Dict[str, Any], None]:
    """
    Relay upstream chat events over SSE from a dedicated signed connection.

    The stream ends after `stream_max_seconds`, on upstream close, or on error.
    """
    if not bridge.settings.has_token:
        yield {"data": ErrorEvent(message=MISSING_TOKEN).model_dump_json()}
        return

    loop = asyncio.get_running_loop()
    deadline = loop.time() + bridge.settings.stream_max_seconds
    connection = bridge.new_connection()

    try:
        await asyncio.wait_for(connection.open(), bridge.settings.stream_max_seconds)
        async with aclosing(connection.events()) as events:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    event = await asyncio.wait_for(anext(events), remaining)
                except (StopAsyncIteration, asyncio.TimeoutError):
                    break
                if isinstance(event, ChatMessage):
                    yield {"data": ChatEvent(payload=event.payload).model_dump_json()}
    except asyncio.TimeoutError:
        yield {"data": ErrorEvent(message="gateway connect timed out").model_dump_json()}
    except GatewayError as e:
        yield {"data": ErrorEvent(message=str(e)).model_dump_json()}
    finally:
        await connection.close()


@router.get("/stream", summary="Stream upstream chat events")
async def stream_chat(bridge=Depends(get_bridge)):
    return EventSourceResponse(chat_event_stream(bridge))
