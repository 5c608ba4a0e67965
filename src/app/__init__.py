"""
Application Bridge Package

Wires downstream subscribers to the gateway client layer:
- One BridgeSession per subscriber, owning its upstream connection and poll timer
- A bounded fan-out publisher per subscriber
- The local event bus used by the UI stream endpoint
"""

from .bridge import BridgeSession
from .events import EventBus, Subscription
from .models import BridgeEvent, ChatEvent, ErrorEvent, SessionsEvent
from .publisher import FanoutPublisher

__all__ = [
    "BridgeSession",
    "FanoutPublisher",
    "EventBus",
    "Subscription",
    "BridgeEvent",
    "SessionsEvent",
    "ChatEvent",
    "ErrorEvent",
]
