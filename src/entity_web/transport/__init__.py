"""Transport listeners.

- HTTP and HTTPS: uvicorn servers bound to their own sockets, serving the
  surface's ASGI app
- Channel: a WebSocket route that rides on whichever of those is running
  and turns frames into synthetic request/response pairs
"""

from .base import TransportKind, TransportListener
from .channel import ChannelConnection, ChannelListener, decode_frame, encode_frame
from .http import HttpListener, HttpsListener, ListenerHandle

__all__ = [
    "TransportKind",
    "TransportListener",
    "HttpListener",
    "HttpsListener",
    "ListenerHandle",
    "ChannelConnection",
    "ChannelListener",
    "decode_frame",
    "encode_frame",
]
