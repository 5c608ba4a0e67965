#!/usr/bin/env python3
"""
Pytest configuration and fixtures for bridge testing
"""

import asyncio
import json
import sys
from pathlib import Path

import httpx
import pytest
from websockets.exceptions import ConnectionClosedOK

# Add the src directory to the path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from config import Settings
from gateway.identity import DeviceIdentityStore
from gateway.tools import GatewayToolsClient

_CLOSED = object()

DEFAULT_CHALLENGE = {"nonce": "abc", "ts": 1000}


class FakeGatewaySocket:
    """Scripted stand-in for a websockets client connection to the gateway."""

    def __init__(self, challenge=DEFAULT_CHALLENGE, hello=True, reject_connect=False, sessions=None,
                 list_error=None):
        self.sent = []
        self.closed = False
        self.hello = hello
        self.reject_connect = reject_connect
        # When set, every sessions.list is answered with ok=false and this message
        self.list_error = list_error
        # Each sessions.list answers with the next batch; the last batch repeats
        self.session_batches = list(sessions or [])
        self._inbox = asyncio.Queue()
        if challenge is not None:
            self.push({"type": "event", "event": "connect.challenge", "payload": challenge})

    def push(self, frame):
        if isinstance(frame, (dict, list)):
            frame = json.dumps(frame)
        self._inbox.put_nowait(frame)

    def requests(self, method):
        return [frame for frame in self.sent if frame.get("method") == method]

    async def send(self, raw):
        if self.closed:
            raise ConnectionClosedOK(None, None)
        frame = json.loads(raw)
        self.sent.append(frame)

        if frame["method"] == "connect":
            if self.reject_connect:
                self.push({"type": "res", "id": frame["id"], "ok": False,
                           "error": {"message": "device signature invalid"}})
            elif self.hello:
                self.push({"type": "res", "id": frame["id"], "ok": True,
                           "payload": {"type": "hello-ok"}})
        elif frame["method"] == "sessions.list" and self.list_error is not None:
            self.push({"type": "res", "id": frame["id"], "ok": False,
                       "error": {"message": self.list_error}})
        elif frame["method"] == "sessions.list":
            if len(self.session_batches) > 1:
                batch = self.session_batches.pop(0)
            else:
                batch = self.session_batches[0] if self.session_batches else []
            self.push({"type": "res", "id": frame["id"], "ok": True,
                       "payload": {"sessions": batch, "count": len(batch)}})

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(_CLOSED)


class FakeConnector:
    """Records dial attempts and hands out fresh fake sockets."""

    def __init__(self, factory=FakeGatewaySocket, error=None):
        self.factory = factory
        self.error = error
        self.calls = []
        self.sockets = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        socket = self.factory()
        self.sockets.append(socket)
        return socket


class FakeSubscriber:
    """Downstream websocket as seen by BridgeSession (Starlette WebSocket subset)."""

    def __init__(self):
        self.messages = []
        self.closed = False
        self._gone = asyncio.Event()

    async def send_text(self, text):
        if self.closed or self._gone.is_set():
            raise RuntimeError("websocket is closed")
        self.messages.append(json.loads(text))

    async def receive(self):
        await self._gone.wait()
        return {"type": "websocket.disconnect", "code": 1000}

    async def close(self, code=1000):
        self.closed = True

    def disconnect(self):
        self._gone.set()

    def of_type(self, event_type):
        return [message for message in self.messages if message["type"] == event_type]

    async def wait_for(self, event_type, count=1, timeout=2.0):
        async def _wait():
            while len(self.of_type(event_type)) < count:
                await asyncio.sleep(0.01)
        await asyncio.wait_for(_wait(), timeout)
        return self.of_type(event_type)


class HistoryGateway:
    """MockTransport handler for /tools/invoke that records every call."""

    def __init__(self, messages=None, status_code=200):
        self.calls = []
        self.messages = messages if messages is not None else [
            {"role": "assistant", "content": [{"type": "text", "text": "done"}]}
        ]
        self.status_code = status_code
        self.block = None

    def history_keys(self):
        return [call["args"]["sessionKey"] for call in self.calls if call["tool"] == "sessions_history"]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append({**body, "authorization": request.headers.get("Authorization")})
        if self.block is not None:
            await self.block.wait()
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="gateway unavailable")
        if body["tool"] == "sessions_history":
            return httpx.Response(200, json={"result": {"messages": self.messages}})
        if body["tool"] == "sessions_list":
            return httpx.Response(200, json={"result": {"details": {"sessions": [{"sessionKey": "t1", "updatedAt": 1}]}}})
        return httpx.Response(200, json={"result": {"delivered": True, "tool": body["tool"]}})


@pytest.fixture
def identity_store(tmp_path):
    """Device identity store backed by a temporary file"""
    return DeviceIdentityStore(tmp_path / "device.json")


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings pointing at a temporary identity file"""
    def _make(**overrides):
        values = {
            "gateway_token": "secret-token",
            "gateway_url": "http://gateway.test",
            "gateway_ws": "ws://gateway.test",
            "device_file": tmp_path / "device.json",
            "poll_interval": 0.05,
            "reconnect_delay": 0.01,
        }
        values.update(overrides)
        return Settings(**values)
    return _make


@pytest.fixture
def history_gateway():
    return HistoryGateway()


@pytest.fixture
def tools_client(history_gateway):
    """Tool-invocation client wired to the recording mock gateway"""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(history_gateway))
    return GatewayToolsClient("http://gateway.test", "secret-token", http_client=http_client)
