from .openclaw import router as openclaw_router
from .stream import router as stream_router

__all__ = ["openclaw_router", "stream_router"]
