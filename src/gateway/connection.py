import asyncio
import json
import logging
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, WebSocketException

from .errors import (
    GatewayAuthError,
    GatewayConfigError,
    GatewayError,
    GatewayTimeoutError,
    GatewayTransportError,
)
from .handshake import DEFAULT_ROLE, DEFAULT_SCOPES, ClientInfo, build_connect_request
from .identity import DeviceIdentityStore
from .protocol import (
    ChatMessage,
    ConnectChallenge,
    HelloOk,
    RequestFailed,
    SessionsListed,
    parse_frame,
    request_frame,
)

SESSIONS_LIST_SCOPE = "operator.read"

# Inbound events surfaced to the owner of a connection
GatewayEvent = Union[HelloOk, SessionsListed, ChatMessage, RequestFailed]

Connector = Callable[..., Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_CHALLENGE = "awaiting_challenge"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSED = "closed"


class GatewayConnection:
    """
    One upstream session with the gateway.

    Drives the transport through dial, challenge, signed connect and hello-ok,
    then yields parsed events until the transport closes. It never reconnects
    on its own; a closed connection stays closed.
    """

    def __init__(
        self,
        url: str,
        token: str,
        identity_store: DeviceIdentityStore,
        client: Optional[ClientInfo] = None,
        role: str = DEFAULT_ROLE,
        scopes: Optional[List[str]] = None,
        connector: Optional[Connector] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.url = url
        self.token = token
        self.identity_store = identity_store
        self.client = client or ClientInfo()
        self.role = role
        self.scopes = list(scopes if scopes is not None else DEFAULT_SCOPES)
        self.logger = logger or logging.getLogger("GatewayConnection")

        self._connector = connector or websockets.connect
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._connect_request_id: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def ready(self) -> bool:
        return self._state is ConnectionState.READY

    async def open(self) -> None:
        """Dial the gateway with the bearer token header and wait for its challenge."""
        if self._state is not ConnectionState.DISCONNECTED:
            raise GatewayError(f"cannot open a connection in state {self._state.value}")
        if not self.token:
            self._state = ConnectionState.CLOSED
            raise GatewayConfigError("missing gateway token")

        self._state = ConnectionState.CONNECTING
        self.logger.debug(f"Dialling gateway at {self.url}")
        try:
            self._ws = await self._connector(
                self.url, additional_headers={"Authorization": f"Bearer {self.token}"}
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            self._state = ConnectionState.CLOSED
            raise GatewayTransportError(f"failed to connect to gateway: {e}") from e

        self._state = ConnectionState.AWAITING_CHALLENGE

    async def events(self) -> AsyncIterator[GatewayEvent]:
        """
        Yield parsed gateway events until the transport closes.

        The challenge is answered internally. Unparseable frames are dropped.
        Failed responses to requests other than connect are yielded as
        RequestFailed so the caller can match them by request id.

        Raises:
            GatewayAuthError: the connect request was rejected
            GatewayTransportError: the transport closed abnormally
        """
        if self._ws is None:
            raise GatewayError("connection is not open")

        try:
            async for raw in self._ws:
                frame = parse_frame(raw)
                if frame is None:
                    continue

                if isinstance(frame, ConnectChallenge):
                    await self._answer_challenge(frame)
                elif isinstance(frame, RequestFailed):
                    if frame.id is not None and frame.id == self._connect_request_id:
                        raise GatewayAuthError(f"gateway rejected connect: {frame.message}")
                    self.logger.warning(f"Gateway request {frame.id} failed: {frame.message}")
                    yield frame
                elif isinstance(frame, HelloOk):
                    if self._state is ConnectionState.AUTHENTICATING:
                        self._state = ConnectionState.READY
                        self.logger.info("Gateway connection ready")
                    yield frame
                else:
                    yield frame
        except ConnectionClosedOK:
            self.logger.debug("Gateway closed the connection")
        except ConnectionClosed as e:
            raise GatewayTransportError(f"gateway connection lost: {e}") from e
        finally:
            self._state = ConnectionState.CLOSED

    async def _answer_challenge(self, challenge: ConnectChallenge) -> None:
        if self._state is not ConnectionState.AWAITING_CHALLENGE:
            self.logger.warning(f"Ignoring connect.challenge in state {self._state.value}")
            return

        identity = self.identity_store.load_or_create()
        request = build_connect_request(
            identity,
            challenge,
            token=self.token,
            role=self.role,
            scopes=self.scopes,
            client=self.client,
        )
        self._connect_request_id = request["id"]
        self._state = ConnectionState.AUTHENTICATING
        await self._send(request)

    async def request_sessions(
        self, limit: int = 200, include_global: bool = True, include_unknown: bool = False
    ) -> str:
        """Send a sessions.list request and return its request id."""
        if not self.ready:
            raise GatewayError(f"cannot list sessions in state {self._state.value}")
        if SESSIONS_LIST_SCOPE not in self.scopes:
            raise GatewayConfigError(f"sessions.list requires scope {SESSIONS_LIST_SCOPE}")

        frame = request_frame(
            "sessions.list",
            {"includeGlobal": include_global, "includeUnknown": include_unknown, "limit": limit},
        )
        await self._send(frame)
        return frame["id"]

    async def _send(self, frame: Dict[str, Any]) -> None:
        if self._ws is None:
            raise GatewayTransportError("gateway connection is closed")
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as e:
            raise GatewayTransportError(f"gateway connection lost: {e}") from e

    async def close(self) -> None:
        self._state = ConnectionState.CLOSED
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


async def fetch_sessions_once(
    connection: GatewayConnection, timeout: float = 7.0, limit: int = 200
) -> List[Dict[str, Any]]:
    """
    Run a bounded handshake and return one sessions.list result.

    The transport is always closed before returning.

    Raises:
        GatewayTimeoutError: no session list within `timeout` seconds
        GatewayError: any other handshake or transport failure
    """

    async def exchange() -> List[Dict[str, Any]]:
        await connection.open()
        list_request_id = None
        async with aclosing(connection.events()) as events:
            async for event in events:
                if isinstance(event, HelloOk):
                    list_request_id = await connection.request_sessions(limit=limit)
                elif isinstance(event, SessionsListed):
                    return event.sessions
                elif isinstance(event, RequestFailed):
                    if list_request_id is not None and event.id == list_request_id:
                        raise GatewayError(f"sessions.list failed: {event.message}")
        raise GatewayTransportError("gateway closed before listing sessions")

    try:
        return await asyncio.wait_for(exchange(), timeout)
    except asyncio.TimeoutError as e:
        raise GatewayTimeoutError(f"gateway handshake timed out after {timeout}s") from e
    finally:
        await connection.close()
