import asyncio
import logging
from contextlib import aclosing
from typing import Callable, Optional, Set

from config import Settings
from gateway.connection import GatewayConnection
from gateway.errors import GatewayError, GatewayTransportError
from gateway.protocol import ChatMessage, HelloOk, RequestFailed, SessionsListed
from gateway.reconciler import SessionReconciler
from gateway.tools import GatewayToolsClient

from .models import ChatEvent, ErrorEvent, SessionsEvent
from .publisher import FanoutPublisher

MISSING_TOKEN_MESSAGE = "missing gateway token"


class BridgeSession:
    """
    Bridges one downstream subscriber to its own upstream gateway connection.

    The subscriber's lifecycle owns everything: its connection, reconciler,
    poll timer and in-flight reconciliations are created here and torn down
    when the subscriber disconnects. Nothing is shared between subscribers.
    """

    def __init__(
        self,
        websocket,
        settings: Settings,
        tools: GatewayToolsClient,
        connection_factory: Callable[[], GatewayConnection],
        logger: Optional[logging.Logger] = None,
    ):
        self.websocket = websocket
        self.settings = settings
        self.tools = tools
        self.connection_factory = connection_factory
        self.logger = logger or logging.getLogger("BridgeSession")

        self.publisher = FanoutPublisher(
            websocket, maxsize=settings.subscriber_queue_size, logger=self.logger
        )
        self.connection: Optional[GatewayConnection] = None
        self.reconciler: Optional[SessionReconciler] = None
        self.connections_opened = 0

        self._poller: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active_tasks(self) -> int:
        """Background tasks still running for this subscriber."""
        return sum(1 for task in self._tasks if not task.done())

    async def run(self) -> None:
        """Serve the subscriber until it disconnects."""
        if not self.settings.has_token:
            await self.publisher.send_now(ErrorEvent(message=MISSING_TOKEN_MESSAGE))
            await self.websocket.close()
            return

        writer = self._spawn(self.publisher.run())
        watcher = self._spawn(self._watch_subscriber())
        self._spawn(self._run_upstream())

        try:
            await asyncio.wait({writer, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Stop the timer, cancel in-flight work and close the upstream socket."""
        self.publisher.close()
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        if self.connection is not None:
            await self.connection.close()
        self.logger.debug("Subscriber torn down")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _watch_subscriber(self) -> None:
        while True:
            message = await self.websocket.receive()
            if message.get("type") == "websocket.disconnect":
                return

    async def _run_upstream(self) -> None:
        while True:
            await self._serve_connection()
            if not self.settings.auto_reconnect:
                self.logger.info("Upstream closed; waiting for the subscriber to reconnect")
                return
            await asyncio.sleep(self.settings.reconnect_delay)

    async def _serve_connection(self) -> None:
        connection = self.connection_factory()
        reconciler = SessionReconciler(
            self.tools.fetch_last_message,
            sessions_limit=self.settings.sessions_limit,
            logger=self.logger,
        )
        self.connection = connection
        self.reconciler = reconciler
        self.connections_opened += 1

        # Last batch publication on this connection; batches go out in arrival order
        previous_batch: Optional[asyncio.Task] = None

        try:
            await connection.open()
            self._poller = self._spawn(self._poll_loop(connection, reconciler))

            async with aclosing(connection.events()) as events:
                async for event in events:
                    if isinstance(event, HelloOk):
                        await reconciler.poll(connection)
                    elif isinstance(event, SessionsListed):
                        # Enrichment must not hold up chat relay or the next tick
                        previous_batch = self._spawn(
                            self._publish_sessions(reconciler, event, previous_batch)
                        )
                    elif isinstance(event, ChatMessage):
                        await self.publisher.publish(ChatEvent(payload=event.payload))
                    elif isinstance(event, RequestFailed):
                        await self.publisher.publish(
                            ErrorEvent(message=f"gateway request failed: {event.message}")
                        )
        except GatewayError as e:
            self.logger.warning(f"Upstream gateway error: {e}")
            await self.publisher.publish(ErrorEvent(message=str(e)))
        finally:
            if self._poller is not None:
                self._poller.cancel()
                await asyncio.gather(self._poller, return_exceptions=True)
                self._poller = None
            await connection.close()

    async def _poll_loop(self, connection: GatewayConnection, reconciler: SessionReconciler) -> None:
        while True:
            await asyncio.sleep(self.settings.poll_interval)
            try:
                await reconciler.poll(connection)
            except GatewayTransportError as e:
                # The event loop on this connection reports the loss downstream
                self.logger.debug(f"Poll skipped: {e}")

    async def _publish_sessions(
        self,
        reconciler: SessionReconciler,
        listed: SessionsListed,
        previous: Optional[asyncio.Task] = None,
    ) -> None:
        """Reconcile one batch and publish it after the batch before it."""
        try:
            event = SessionsEvent.from_batch(
                listed.payload, await reconciler.reconcile(listed.sessions)
            )
        except Exception as e:
            self.logger.exception("Failed to reconcile session batch")
            event = ErrorEvent(message=f"failed to reconcile sessions: {e}")

        if previous is not None:
            # The earlier batch goes out first
            await asyncio.wait({previous})
        await self.publisher.publish(event)
