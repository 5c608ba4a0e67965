#!/usr/bin/env python3
"""
Test the tool-invocation client
"""

import json

import httpx
import pytest

from conftest import HistoryGateway
from gateway.errors import GatewayConfigError, ToolInvocationError
from gateway.tools import GatewayToolsClient, extract_text


def make_client(handler, token="secret-token"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GatewayToolsClient("http://gateway.test/", token, http_client=http_client)


def test_extract_text():
    assert extract_text("plain") == "plain"
    assert extract_text([{"type": "image"}, {"type": "text", "text": "hello"}]) == "hello"
    assert extract_text([{"type": "image"}]) is None
    assert extract_text(None) is None


@pytest.mark.asyncio
async def test_invoke_posts_tool_envelope():
    seen = {}

    async def handler(request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = request.content
        return httpx.Response(200, json={"result": {"ok": 1}})

    client = make_client(handler)
    payload = await client.invoke("sessions_list", {"limit": 3})

    assert seen["url"] == "http://gateway.test/tools/invoke"
    assert seen["auth"] == "Bearer secret-token"
    assert json.loads(seen["body"]) == {
        "tool": "sessions_list",
        "action": "json",
        "args": {"limit": 3},
    }
    assert payload == {"result": {"ok": 1}}


@pytest.mark.asyncio
async def test_invoke_without_token():
    gateway = HistoryGateway()
    client = make_client(gateway, token="")

    with pytest.raises(GatewayConfigError):
        await client.invoke("sessions_list", {})

    assert gateway.calls == []


@pytest.mark.asyncio
async def test_invoke_error_status():
    client = make_client(HistoryGateway(status_code=503))

    with pytest.raises(ToolInvocationError) as exc_info:
        await client.invoke("sessions_history", {"sessionKey": "s1"})

    assert exc_info.value.status_code == 503
    assert exc_info.value.body == "gateway unavailable"
    assert exc_info.value.tool == "sessions_history"


@pytest.mark.asyncio
async def test_fetch_history_reads_details_fallback():
    async def handler(request):
        return httpx.Response(200, json={"result": {"details": {"messages": [{"role": "user"}, "x"]}}})

    client = make_client(handler)

    assert await client.fetch_history("s1") == [{"role": "user"}]


@pytest.mark.asyncio
async def test_fetch_last_message(history_gateway, tools_client):
    last = await tools_client.fetch_last_message("s1")

    assert last == {"lastRole": "assistant", "lastMessage": "done"}
    assert history_gateway.calls[0]["args"] == {"sessionKey": "s1", "limit": 1, "includeTools": False}


@pytest.mark.asyncio
async def test_fetch_last_message_of_empty_session(history_gateway, tools_client):
    history_gateway.messages = []

    assert await tools_client.fetch_last_message("s1") == {"lastRole": None, "lastMessage": None}


@pytest.mark.asyncio
async def test_fetch_last_message_failure_is_none():
    client = make_client(HistoryGateway(status_code=500))

    assert await client.fetch_last_message("s1") is None


@pytest.mark.asyncio
async def test_fetch_last_message_network_failure_is_none():
    async def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = make_client(handler)

    assert await client.fetch_last_message("s1") is None


@pytest.mark.asyncio
async def test_list_sessions(tools_client):
    assert await tools_client.list_sessions() == [{"sessionKey": "t1", "updatedAt": 1}]


@pytest.mark.asyncio
async def test_send_message_to_session(history_gateway, tools_client):
    result = await tools_client.send_message("s1", "hello")

    call = history_gateway.calls[0]
    assert call["tool"] == "sessions_send"
    assert call["args"] == {"sessionKey": "s1", "message": "hello"}
    assert result == {"delivered": True, "tool": "sessions_send"}


@pytest.mark.asyncio
async def test_send_message_routes_telegram(history_gateway, tools_client):
    """Test telegram-backed sessions go through the message tool with the prefix stripped"""
    await tools_client.send_message(
        "s1",
        "hello",
        delivery_context={"channel": "telegram", "to": "telegram:42", "accountId": "acct"},
    )

    call = history_gateway.calls[0]
    assert call["tool"] == "message"
    assert call["args"] == {
        "action": "send",
        "channel": "telegram",
        "target": "42",
        "accountId": "acct",
        "message": "hello",
    }


@pytest.mark.asyncio
async def test_send_message_telegram_by_last_channel(history_gateway, tools_client):
    await tools_client.send_message("s1", "hi", delivery_context={"to": "99"}, last_channel="telegram")

    assert history_gateway.calls[0]["tool"] == "message"
    assert history_gateway.calls[0]["args"]["target"] == "99"


@pytest.mark.asyncio
async def test_aclose_leaves_borrowed_client_open(tools_client):
    await tools_client.aclose()

    assert not tools_client._client.is_closed
    await tools_client._client.aclose()
