"""
Downstream event models.

Each message sent to a subscriber is exactly one of these, serialized as JSON.
"""

from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field

from gateway.protocol import SessionSummary


class SessionsEvent(BaseModel):
    """A complete, reconciled session batch."""

    type: Literal["sessions"] = "sessions"
    payload: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_batch(
        cls, response_payload: Dict[str, Any], sessions: List[SessionSummary]
    ) -> "SessionsEvent":
        # Other fields of the sessions.list payload are carried along
        payload = dict(response_payload)
        payload["sessions"] = [session.to_wire() for session in sessions]
        return cls(payload=payload)


class ChatEvent(BaseModel):
    """Upstream chat event, relayed verbatim."""

    type: Literal["chat"] = "chat"
    payload: Dict[str, Any] = Field(default_factory=dict)


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


BridgeEvent = Union[SessionsEvent, ChatEvent, ErrorEvent]
