import os
import uuid
from typing import Dict, Optional

import httpx
import logfire
import uvicorn
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from api.routes import openclaw_router, stream_router
from app.bridge import BridgeSession
from app.events import EventBus
from config import Settings
from gateway.connection import Connector, GatewayConnection
from gateway.identity import DeviceIdentityStore
from gateway.tools import GatewayToolsClient


class BridgeServer:
    """
    Accepts downstream subscribers and gives each one its own gateway bridge.

    Also hosts the one-shot REST/SSE routes under /api, which share the
    identity store, the tool-invocation client and the local event bus.
    """

    def __init__(
        self,
        logger,
        settings: Settings,
        connector: Optional[Connector] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.logger = logger
        self.settings = settings
        self.connector = connector

        self.host = settings.host
        self.port = settings.port

        self.identity_store = DeviceIdentityStore(settings.device_file, logger=self.logger)
        self.tools = GatewayToolsClient(
            settings.gateway_url,
            settings.gateway_token,
            http_client=http_client,
            timeout=settings.http_timeout,
            logger=self.logger,
        )
        self.event_bus = EventBus(logger=self.logger)

        self.app = FastAPI(title="Claw Bridge Server", version="1.0.0")
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        self.app.state.bridge = self
        self.app.include_router(openclaw_router, prefix="/api/openclaw", tags=["Gateway"])
        self.app.include_router(stream_router, prefix="/api", tags=["Local events"])

        self.connected_subscribers: Dict[str, BridgeSession] = {}

        # Register WebSocket route
        @self.app.websocket("/ws")
        async def websocket_endpoint(websocket: WebSocket):
            await self.websocket_handler(websocket)

        # Health check endpoint
        @self.app.get("/health")
        async def health_check():
            return {
                "status": "healthy",
                "connected_subscribers": len(self.connected_subscribers),
            }

    def new_connection(self) -> GatewayConnection:
        """A fresh, unopened upstream connection; never shared."""
        return GatewayConnection(
            self.settings.gateway_ws,
            self.settings.gateway_token,
            self.identity_store,
            client=self.settings.client_info(),
            role=self.settings.role,
            scopes=self.settings.scopes,
            connector=self.connector,
            logger=self.logger,
        )

    async def websocket_handler(self, websocket: WebSocket) -> None:
        """Serve one subscriber for the lifetime of its websocket."""
        await websocket.accept()
        subscriber_id = str(uuid.uuid4())
        session = BridgeSession(
            websocket,
            self.settings,
            self.tools,
            self.new_connection,
            logger=self.logger,
        )
        self.connected_subscribers[subscriber_id] = session

        with logfire.span("bridge_server.subscriber", subscriber_id=subscriber_id):
            try:
                self.logger.info(f"Subscriber {subscriber_id} connected")
                await session.run()
            except Exception:
                # Catch everything else and log the stack trace
                self.logger.exception("Unhandled error in websocket_handler")
            finally:
                self.connected_subscribers.pop(subscriber_id, None)
                self.logger.info(f"Subscriber {subscriber_id} disconnected")

    async def listen(self):
        """Start the server and listen for connections."""
        self.logger.info("Starting bridge server")
        if not self.settings.has_token:
            self.logger.warning(
                "OPENCLAW_GATEWAY_TOKEN is not set; subscribers will be refused"
            )

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level="info" if self.settings.debug else "warning",
        )
        server = uvicorn.Server(config)

        try:
            self.logger.info(f"Bridge server running on ws://{self.host}:{self.port}/ws")
            self.logger.info(f"Bridge server started with PID {os.getpid()}")
            await server.serve()
        finally:
            await self.shutdown()

    async def shutdown(self):
        """Tear down every subscriber and release shared clients."""
        self.logger.info("Shutting down bridge server...")
        if self.connected_subscribers:
            self.logger.info(
                f"Closing {len(self.connected_subscribers)} subscribers..."
            )
            for session in list(self.connected_subscribers.values()):
                await session.shutdown()
            self.connected_subscribers.clear()

        self.event_bus.close()
        await self.tools.aclose()
        self.logger.info("Bridge server shutdown completed")
