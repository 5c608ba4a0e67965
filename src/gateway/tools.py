import logging
from typing import Any, Dict, List, Optional

import httpx

from .errors import GatewayConfigError, ToolInvocationError


def extract_text(content: Any) -> Optional[str]:
    """First text part of a message's content, or the content itself when it is a string."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for part in content:
            if isinstance(part, dict) and part.get("type") == "text":
                return part.get("text")
    return None


def _result_list(payload: Dict[str, Any], field: str) -> List[Dict[str, Any]]:
    result = payload.get("result") or {}
    if not isinstance(result, dict):
        return []
    items = result.get(field)
    if not items:
        details = result.get("details") or {}
        items = details.get(field) if isinstance(details, dict) else None
    return [item for item in items or [] if isinstance(item, dict)]


class GatewayToolsClient:
    """
    Request/response client for the gateway's tool-invocation endpoint.

    Every call is a single POST to {base_url}/tools/invoke; nothing here is
    tied to the persistent streaming connection.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
        logger: Optional[logging.Logger] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.logger = logger or logging.getLogger("GatewayToolsClient")
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def invoke(self, tool: str, args: Dict[str, Any], action: str = "json") -> Dict[str, Any]:
        """
        Invoke a gateway tool.

        Raises:
            GatewayConfigError: no bearer token configured
            ToolInvocationError: the gateway answered with a non-2xx status
            httpx.HTTPError: network failure
        """
        if not self.token:
            raise GatewayConfigError("missing gateway token")

        response = await self._client.post(
            f"{self.base_url}/tools/invoke",
            headers={"Authorization": f"Bearer {self.token}"},
            json={"tool": tool, "action": action, "args": args},
        )
        if response.is_error:
            raise ToolInvocationError(response.status_code, response.text, tool=tool)

        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def fetch_history(
        self, session_key: str, limit: int = 80, include_tools: bool = True
    ) -> List[Dict[str, Any]]:
        payload = await self.invoke(
            "sessions_history",
            {"sessionKey": session_key, "limit": limit, "includeTools": include_tools},
        )
        return _result_list(payload, "messages")

    async def fetch_last_message(self, session_key: str) -> Optional[Dict[str, Any]]:
        """
        Most recent message of a session as {lastRole, lastMessage}.

        Returns None on any failure; enrichment is best effort.
        """
        try:
            messages = await self.fetch_history(session_key, limit=1, include_tools=False)
        except (httpx.HTTPError, ToolInvocationError, ValueError) as e:
            self.logger.debug(f"History lookup failed for {session_key}: {e}")
            return None

        last = messages[0] if messages else {}
        return {
            "lastRole": last.get("role"),
            "lastMessage": extract_text(last.get("content")),
        }

    async def list_sessions(self) -> List[Dict[str, Any]]:
        payload = await self.invoke("sessions_list", {})
        return _result_list(payload, "sessions")

    async def send_message(
        self,
        session_key: str,
        message: str,
        delivery_context: Optional[Dict[str, Any]] = None,
        channel: Optional[str] = None,
        last_channel: Optional[str] = None,
    ) -> Any:
        """Send a message into a session, routing telegram-backed sessions through the message tool."""
        delivery_context = delivery_context or {}
        is_telegram = "telegram" in (delivery_context.get("channel"), channel, last_channel)

        if is_telegram:
            target = str(delivery_context.get("to") or "")
            if target.startswith("telegram:"):
                target = target[len("telegram:"):]
            payload = await self.invoke(
                "message",
                {
                    "action": "send",
                    "channel": "telegram",
                    "target": target,
                    "accountId": delivery_context.get("accountId"),
                    "message": message,
                },
            )
        else:
            payload = await self.invoke(
                "sessions_send", {"sessionKey": session_key, "message": message}
            )

        return payload.get("result") or payload.get("details") or payload

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
