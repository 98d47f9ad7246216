"""Request/response objects shared by every transport.

The pipeline only ever sees one capability set, no matter which
transport delivered the interaction:

- request: ``method``, ``url``, ``body``, ``app``, ``params``, ``state``,
  ``is_authenticated()``
- response: ``status_code``, ``status(code)``, ``send(data)``, ``json(data)``

HTTP and HTTPS already arrive as request/response pairs; they are wrapped
in :class:`HttpRequest`/:class:`HttpResponse`. The channel transport
delivers bare frames, so :class:`RequestAdapter` synthesizes a
:class:`ChannelRequest`/:class:`ChannelResponse` pair for each one.

The two response variants differ in how ``send`` terminates:

- :class:`HttpResponse` finishes the response; a second ``send`` fails.
- :class:`ChannelResponse` emits a frame over the still-open connection
  and can be called any number of times.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from starlette.requests import Request as StarletteRequest
from starlette.responses import JSONResponse, PlainTextResponse, Response as StarletteResponse

from .errors import ResponseAlreadySentError

if TYPE_CHECKING:
    from .pipeline import Pipeline
    from .transport.channel import ChannelConnection

logger = logging.getLogger(__name__)

CHANNEL_METHOD = "SOCKET"
CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"
DATA_EVENT = "data"


def user_is_authenticated(user: Any) -> bool:
    """Check a session user.

    A user counts as authenticated unless it is missing or explicitly
    marks itself as logged out (``logged_in: False`` on a mapping, or a
    falsy ``is_authenticated`` attribute such as Starlette's
    ``UnauthenticatedUser``).
    """
    if user is None:
        return False
    if isinstance(user, Mapping):
        return user.get("logged_in") is not False
    return bool(getattr(user, "is_authenticated", True))


# =============================================================================
# Requests
# =============================================================================


class Request:
    """Base request shape consumed by the pipeline."""

    def __init__(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        app: Pipeline | None = None,
        user: Any = None,
    ):
        self.method = method
        self.url = url
        self.body = body
        self.app = app
        self.user = user
        self.params: dict[str, Any] = {}
        self.state: dict[str, Any] = {}
        self.original_method = method

    @property
    def path(self) -> str:
        return self.url

    @property
    def content_type(self) -> str:
        return ""

    def is_authenticated(self) -> bool:
        return user_is_authenticated(self.user)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.method} {self.url}>"


class HttpRequest(Request):
    """Request delivered by the HTTP or HTTPS listener."""

    def __init__(
        self,
        method: str,
        url: str,
        body: bytes = b"",
        *,
        app: Pipeline | None = None,
        user: Any = None,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, str] | None = None,
        raw: StarletteRequest | None = None,
    ):
        super().__init__(method, url, body, app=app, user=user)
        self.headers: Mapping[str, str] = headers if headers is not None else {}
        self.query: Mapping[str, str] = query if query is not None else {}
        self.raw = raw

    @classmethod
    async def from_starlette(cls, request: StarletteRequest, app: Pipeline) -> HttpRequest:
        """Wrap a Starlette request, reading its body up front."""
        return cls(
            request.method,
            request.url.path,
            await request.body(),
            app=app,
            # request.user asserts when no AuthenticationMiddleware is installed
            user=request.scope.get("user"),
            headers=request.headers,
            query=request.query_params,
            raw=request,
        )

    @property
    def content_type(self) -> str:
        value = self.headers.get("content-type", "")
        return value.split(";", 1)[0].strip().lower()


class ChannelRequest(Request):
    """Request synthesized from a channel event.

    ``url`` is the event name and ``body`` the frame payload. Session
    state is read from the owning connection, which outlives the request.
    """

    def __init__(
        self,
        connection: ChannelConnection,
        event: str,
        payload: Any = None,
        *,
        app: Pipeline | None = None,
    ):
        self.connection = connection
        super().__init__(CHANNEL_METHOD, event, payload, app=app, user=connection.user)

    @property
    def user(self) -> Any:
        return self.connection.user

    @user.setter
    def user(self, value: Any) -> None:
        self.connection.user = value

    @property
    def session(self) -> dict[str, Any]:
        return self.connection.session

    @property
    def headers(self) -> Mapping[str, str]:
        return self.connection.headers


# =============================================================================
# Responses
# =============================================================================


class Response:
    """Base response shape consumed by the pipeline."""

    def __init__(self) -> None:
        self.status_code: int | None = None
        self.headers: dict[str, str] = {}

    def status(self, code: int) -> Response:
        """Set the status code on this instance and return it for chaining."""
        self.status_code = code
        return self

    @property
    def finished(self) -> bool:
        """True once nothing more can be sent."""
        return False

    async def send(self, data: Any = None) -> Response:
        raise NotImplementedError

    async def json(self, data: Any) -> Response:
        return await self.send(data)


class HttpResponse(Response):
    """One-shot response backed by an HTTP connection.

    ``send`` completes the response; the listener renders it with
    :meth:`to_starlette` once the pipeline returns.
    """

    def __init__(self) -> None:
        super().__init__()
        self._finished = False
        self._body: Any = None
        self._as_json = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def body(self) -> Any:
        return self._body

    async def send(self, data: Any = None) -> HttpResponse:
        if self._finished:
            raise ResponseAlreadySentError("Cannot send after the response has finished")
        self._body = data
        self._finished = True
        return self

    async def json(self, data: Any) -> HttpResponse:
        await self.send(data)
        self._as_json = True
        return self

    def to_starlette(self) -> StarletteResponse:
        """Render the finished response."""
        status = self.status_code or 200
        data = self._body

        if self._as_json or isinstance(data, (dict, list)):
            return JSONResponse(data, status_code=status, headers=self.headers)
        if data is None:
            return StarletteResponse(status_code=status, headers=self.headers)
        if isinstance(data, (bytes, bytearray)):
            return StarletteResponse(
                bytes(data),
                status_code=status,
                headers=self.headers,
                media_type="application/octet-stream",
            )
        return PlainTextResponse(str(data), status_code=status, headers=self.headers)


class ChannelResponse(Response):
    """Response backed by a persistent channel connection.

    Every ``send`` emits a ``data`` frame and leaves the connection open.
    Mapping payloads without a ``status`` key are tagged with the current
    status code; an existing ``status`` is left alone.
    """

    def __init__(self, connection: ChannelConnection):
        super().__init__()
        self.connection = connection

    @property
    def finished(self) -> bool:
        return not self.connection.connected

    def _tag(self, data: Any) -> Any:
        if isinstance(data, Mapping) and "status" not in data and self.status_code is not None:
            return {**data, "status": self.status_code}
        return data

    async def send(self, data: Any = None) -> ChannelResponse:
        await self.connection.emit(DATA_EVENT, self._tag(data))
        return self


# =============================================================================
# Adapter
# =============================================================================


class RequestAdapter:
    """Builds request/response pairs for channel events.

    Every event (``connect``, each message, ``disconnect``) gets its own
    pair; nothing is reused between events. State that must persist for
    the life of a connection lives on the :class:`ChannelConnection`.
    """

    def __init__(self, pipeline: Pipeline):
        self.pipeline = pipeline

    def build(
        self,
        connection: ChannelConnection,
        event: str,
        payload: Any = None,
    ) -> tuple[ChannelRequest, ChannelResponse]:
        request = ChannelRequest(connection, event, payload, app=self.pipeline)
        response = ChannelResponse(connection)
        return request, response
