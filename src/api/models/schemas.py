from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class SendRequest(BaseModel):
    sessionKey: Optional[str] = None
    message: Optional[str] = None
    deliveryContext: Optional[Dict[str, Any]] = None
    channel: Optional[str] = None
    lastChannel: Optional[str] = None


class HistoryResponse(BaseModel):
    ok: bool
    messages: List[Dict[str, Any]]


class SendResponse(BaseModel):
    ok: bool
    result: Any = None


class SyncResponse(BaseModel):
    ok: bool
    count: int
    sessions: List[Dict[str, Any]]
