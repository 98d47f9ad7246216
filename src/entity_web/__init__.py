"""entity-web: HTTP, HTTPS and a WebSocket channel behind one pipeline."""

from .adapter import (
    ChannelRequest,
    ChannelResponse,
    HttpRequest,
    HttpResponse,
    Request,
    RequestAdapter,
    Response,
)
from .config import HttpConfig, HttpsConfig, ServersConfig, SocketConfig, load_config
from .errors import (
    ChannelAttachError,
    FrameError,
    InitializationError,
    ResponseAlreadySentError,
    TransportStartError,
    WebSurfaceError,
)
from .hooks import HookBus
from .pipeline import Pipeline
from .surface import SurfaceState, WebSurface

__all__ = [
    # Surface
    "WebSurface",
    "SurfaceState",
    "HookBus",
    "Pipeline",
    # Request/response
    "Request",
    "Response",
    "HttpRequest",
    "HttpResponse",
    "ChannelRequest",
    "ChannelResponse",
    "RequestAdapter",
    # Config
    "ServersConfig",
    "HttpConfig",
    "HttpsConfig",
    "SocketConfig",
    "load_config",
    # Errors
    "WebSurfaceError",
    "InitializationError",
    "TransportStartError",
    "ChannelAttachError",
    "ResponseAlreadySentError",
    "FrameError",
]
