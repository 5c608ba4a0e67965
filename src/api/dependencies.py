from fastapi import Request


def get_bridge(request: Request):
    """The BridgeServer owning this app; holds settings and shared clients."""
    return request.app.state.bridge
