"""Bidirectional channel transport.

Rides on the HTTP or HTTPS listener as a WebSocket route. Frames are
JSON arrays ``[event, payload]``; each one is turned into a synthetic
request/response pair and run through the same pipeline as HTTP traffic.

Connection lifecycle as seen by the pipeline:

1. ``connect``: synthesized once the socket is accepted
2. ``<event>``: one per client frame, dispatched concurrently
3. ``disconnect``: synthesized after the socket closes and in-flight
   frames have finished

Responses are sent back as ``["data", payload]`` frames.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import Coroutine, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from starlette.routing import WebSocketRoute
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from ..adapter import CONNECT_EVENT, DISCONNECT_EVENT, RequestAdapter
from ..errors import ChannelAttachError, FrameError
from ..hooks import SOCKET_PRE_INIT
from .base import TransportKind, TransportListener

if TYPE_CHECKING:
    from ..surface import WebSurface

logger = logging.getLogger(__name__)

RESERVED_EVENTS = frozenset({CONNECT_EVENT, DISCONNECT_EVENT})


def encode_frame(event: str, payload: Any = None) -> str:
    """Serialize an outbound frame."""
    return json.dumps([event, payload])


def decode_frame(data: str) -> tuple[str, Any]:
    """Parse an inbound ``[event, payload]`` frame.

    Raises:
        FrameError: Not JSON, not a one- or two-element array with a
            string event name, or a reserved event name
    """
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as e:
        raise FrameError(f"Invalid JSON frame: {e}") from e

    if (
        not isinstance(parsed, list)
        or not 1 <= len(parsed) <= 2
        or not isinstance(parsed[0], str)
        or not parsed[0]
    ):
        raise FrameError("Frame must be a JSON array [event, payload]")

    event = parsed[0]
    if event in RESERVED_EVENTS:
        raise FrameError(f"Reserved event name: {event}")

    return event, parsed[1] if len(parsed) == 2 else None


class ChannelConnection:
    """One connected channel client.

    Holds the state that persists across events (user, session) and
    serializes outbound frames.
    """

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self.id = uuid.uuid4().hex
        self.user: Any = websocket.scope.get("user")
        session = websocket.scope.get("session")
        self.session: dict[str, Any] = {} if session is None else session
        self._connected = False
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    @property
    def headers(self) -> Mapping[str, str]:
        return self.websocket.headers

    @property
    def connected(self) -> bool:
        return self._connected and self.websocket.client_state == WebSocketState.CONNECTED

    async def accept(self) -> None:
        await self.websocket.accept()
        self._connected = True

    def mark_closed(self) -> None:
        self._connected = False

    async def emit(self, event: str, payload: Any = None) -> None:
        """Send a frame. Frames emitted after the client left are dropped."""
        async with self._send_lock:
            if not self.connected:
                logger.debug(f"Dropping {event} frame for closed channel {self.id}")
                return
            await self.websocket.send_text(encode_frame(event, payload))

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight frame handlers."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


@dataclass
class ChannelHandle:
    """The installed channel route and the listener it rides on."""

    base: TransportListener
    route: WebSocketRoute


class ChannelListener(TransportListener):
    """WebSocket channel attached to a running HTTP/HTTPS listener."""

    kind = TransportKind.CHANNEL

    def __init__(self, surface: WebSurface):
        super().__init__(surface)
        self.adapter = RequestAdapter(surface.pipeline)
        self.connections: dict[str, ChannelConnection] = {}

    def _base_listener(self) -> TransportListener:
        for listener in (self.surface.https, self.surface.http):
            if listener.started:
                return listener
        raise ChannelAttachError(self.kind, "neither the HTTPS nor the HTTP listener has started")

    async def _open(self) -> ChannelHandle:
        base = self._base_listener()

        await self.surface.hooks.fire(SOCKET_PRE_INIT, {"web": self.surface, "channel": self})

        path = self.surface.config.socket.path
        route = WebSocketRoute(path, self.endpoint, name="entity-web-channel")
        self.surface.app.router.routes.insert(0, route)

        logger.info(f"Channel attached at {path} on the {base.kind.value} listener")
        return ChannelHandle(base=base, route=route)

    async def dispatch(self, connection: ChannelConnection, event: str, payload: Any = None) -> None:
        """Run one channel event through the pipeline."""
        request, response = self.adapter.build(connection, event, payload)
        await self.surface.handle(request, response)

    async def endpoint(self, websocket: WebSocket) -> None:
        """WebSocket endpoint serving one channel client."""
        connection = ChannelConnection(websocket)
        await connection.accept()
        self.connections[connection.id] = connection
        logger.info(f"Channel client {connection.id} connected")

        try:
            await self.dispatch(connection, CONNECT_EVENT)

            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break

                data = message.get("text")
                if data is None:
                    data = (message.get("bytes") or b"").decode("utf-8", errors="replace")

                try:
                    event, payload = decode_frame(data)
                except FrameError as e:
                    logger.warning(f"Dropping frame from channel {connection.id}: {e}")
                    continue

                connection.spawn(self.dispatch(connection, event, payload))

        except WebSocketDisconnect:
            pass
        except Exception as e:
            logger.exception(f"Channel error for {connection.id}: {e}")
        finally:
            connection.mark_closed()
            self.connections.pop(connection.id, None)
            await connection.drain()
            await self.dispatch(connection, DISCONNECT_EVENT)
            logger.info(f"Channel client {connection.id} disconnected")
