"""
Gateway wire frames.

Frames are JSON objects discriminated by `type` ("req", "res", "event").
Parsing is defensive: anything that is not valid JSON or lacks the expected
discriminators comes back as None and is dropped by the caller.
"""

import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger("gateway.protocol")

# Identifier fields the gateway uses interchangeably for a session, by priority
SESSION_KEY_ALIASES = ("key", "sessionKey", "session_id", "id", "sessionId")


def resolve_session_key(data: Dict[str, Any]) -> Optional[str]:
    for alias in SESSION_KEY_ALIASES:
        value = data.get(alias)
        if value:
            return str(value)
    return None


class SessionSummary(BaseModel):
    """Normalized session entry from sessions.list; unknown fields pass through."""

    model_config = ConfigDict(extra="allow")

    # Only the key is normalized; everything else is relayed as the gateway sent it
    key: Optional[str] = None
    displayName: Any = None
    model: Any = None
    modelProvider: Any = None
    updatedAt: Any = None
    totalTokens: Any = None
    lastMessage: Any = None
    lastRole: Any = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "SessionSummary":
        """Collapse the aliased identifier fields into a single `key`."""
        data = dict(raw)
        key = resolve_session_key(data)
        for alias in SESSION_KEY_ALIASES:
            data.pop(alias, None)
        data["key"] = key
        return cls.model_validate(data)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConnectChallenge(BaseModel):
    nonce: Optional[str] = None
    ts: Optional[float] = None


class HelloOk(BaseModel):
    id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class SessionsListed(BaseModel):
    id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def sessions(self) -> List[Dict[str, Any]]:
        return [s for s in self.payload.get("sessions") or [] if isinstance(s, dict)]


class ChatMessage(BaseModel):
    """Unsolicited chat event; the payload is relayed verbatim."""

    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def session_key(self) -> Optional[str]:
        return resolve_session_key(self.payload)


class RequestFailed(BaseModel):
    id: Optional[str] = None
    error: Any = None

    @property
    def message(self) -> str:
        if isinstance(self.error, dict):
            return str(self.error.get("message") or self.error.get("code") or self.error)
        return str(self.error or "request failed")


GatewayFrame = Union[ConnectChallenge, HelloOk, SessionsListed, ChatMessage, RequestFailed]


def request_frame(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"type": "req", "id": str(uuid.uuid4()), "method": method, "params": params}


def parse_frame(raw: Union[str, bytes]) -> Optional[GatewayFrame]:
    """Parse one inbound frame, returning None for anything unrecognized."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError, RecursionError):
        logger.debug("Dropping non-JSON gateway frame")
        return None

    if not isinstance(data, dict):
        return None

    frame_type = data.get("type")
    payload = data.get("payload")
    if not isinstance(payload, dict):
        payload = {}

    try:
        if frame_type == "event":
            event = data.get("event")
            if event == "connect.challenge":
                return ConnectChallenge.model_validate(payload)
            if event == "chat":
                return ChatMessage(payload=payload)
            return None

        if frame_type == "res":
            if not data.get("ok"):
                return RequestFailed(id=data.get("id"), error=data.get("error"))
            if payload.get("type") == "hello-ok":
                return HelloOk(id=data.get("id"), payload=payload)
            if isinstance(payload.get("sessions"), list):
                return SessionsListed(id=data.get("id"), payload=payload)
            return None
    except ValidationError as e:
        logger.debug(f"Dropping malformed {frame_type} frame: {e}")
        return None

    return None
