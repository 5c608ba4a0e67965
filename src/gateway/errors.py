from typing import Optional


class GatewayError(Exception):
    """Base class for every failure talking to the OpenClaw gateway."""


class GatewayConfigError(GatewayError):
    """Raised before any network activity when the bridge is misconfigured."""


class GatewayTransportError(GatewayError):
    """Dial failure, abnormal close, or a send on a dead socket."""


class GatewayAuthError(GatewayError):
    """The gateway rejected the signed connect request."""


class GatewayTimeoutError(GatewayError):
    """A bounded one-shot exchange did not finish in time."""


class ToolInvocationError(GatewayError):
    """Non-success response from the gateway's /tools/invoke endpoint."""

    def __init__(self, status_code: int, body: str, tool: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        self.tool = tool
        super().__init__(f"tool {tool or 'invoke'} failed with HTTP {status_code}: {body}")
