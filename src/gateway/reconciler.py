import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .connection import GatewayConnection
from .errors import GatewayError
from .protocol import SessionSummary

LastMessageLookup = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


class SessionReconciler:
    """
    Diffs polled session summaries against the last seen `updatedAt`.

    Only new or advanced sessions get a history lookup; the rest pass through
    untouched. The cache belongs to exactly one connection and dies with it.
    """

    def __init__(
        self,
        fetch_last_message: LastMessageLookup,
        sessions_limit: int = 200,
        logger: Optional[logging.Logger] = None,
    ):
        self.fetch_last_message = fetch_last_message
        self.sessions_limit = sessions_limit
        self.logger = logger or logging.getLogger("SessionReconciler")
        self._last_updated_at: Dict[str, Any] = {}

    async def poll(self, connection: GatewayConnection) -> bool:
        """Request a fresh session list; a no-op unless the connection is ready."""
        if not connection.ready:
            return False
        await connection.request_sessions(limit=self.sessions_limit)
        return True

    async def reconcile(self, raw_sessions: List[Dict[str, Any]]) -> List[SessionSummary]:
        """
        Normalize and enrich one sessions.list batch.

        Lookups for changed sessions run concurrently and are all awaited, so the
        returned list is always the complete batch in its original order.
        """
        summaries = [SessionSummary.from_raw(raw) for raw in raw_sessions]
        return list(await asyncio.gather(*(self._reconcile_one(s) for s in summaries)))

    async def _reconcile_one(self, summary: SessionSummary) -> SessionSummary:
        if not summary.key:
            return summary

        updated_at = summary.updatedAt or 0
        if summary.key in self._last_updated_at and self._last_updated_at[summary.key] == updated_at:
            return summary

        # Recorded before the lookup so an overlapping poll does not fetch twice
        self._last_updated_at[summary.key] = updated_at

        try:
            last = await self.fetch_last_message(summary.key)
        except GatewayError as e:
            self.logger.debug(f"Skipping enrichment for {summary.key}: {e}")
            last = None

        if not last:
            return summary
        return summary.model_copy(
            update={"lastRole": last.get("lastRole"), "lastMessage": last.get("lastMessage")}
        )

    def reset(self) -> None:
        self._last_updated_at.clear()

    def __len__(self) -> int:
        return len(self._last_updated_at)
