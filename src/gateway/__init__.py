"""
OpenClaw Gateway Client Package

Client side of the gateway's wire protocol:
- Device identity persistence and the signed connect handshake
- A streaming connection that parses inbound frames into typed events
- Session reconciliation that enriches only changed sessions
- The request/response tool-invocation surface
"""

from .connection import ConnectionState, GatewayConnection, fetch_sessions_once
from .errors import (
    GatewayAuthError,
    GatewayConfigError,
    GatewayError,
    GatewayTimeoutError,
    GatewayTransportError,
    ToolInvocationError,
)
from .handshake import ClientInfo, build_connect_request, build_device_auth_payload
from .identity import DeviceIdentity, DeviceIdentityStore, derive_fingerprint
from .protocol import ChatMessage, HelloOk, SessionSummary, SessionsListed
from .reconciler import SessionReconciler
from .tools import GatewayToolsClient

__all__ = [
    "ChatMessage",
    "ClientInfo",
    "ConnectionState",
    "DeviceIdentity",
    "DeviceIdentityStore",
    "GatewayAuthError",
    "GatewayConfigError",
    "GatewayConnection",
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayToolsClient",
    "GatewayTransportError",
    "HelloOk",
    "SessionReconciler",
    "SessionSummary",
    "SessionsListed",
    "ToolInvocationError",
    "build_connect_request",
    "build_device_auth_payload",
    "derive_fingerprint",
    "fetch_sessions_once",
]
