"""The web surface and its initialization sequence.

:class:`WebSurface` owns the shared pipeline, the Starlette app every
listener serves, and the three transport listeners. It is built
explicitly and passed to whatever needs it; there is no global instance.

``initialize()`` runs these phases strictly in order, stopping at the
first failure and re-raising it unchanged:

1. fire ``web.pre-init``
2. set up the pipeline: body parser, method override, the per-request
   ``web.routing.init`` middleware, fire ``web.routing`` (stage
   ``setup``), then the terminal error fallback
3. fire ``web.routing`` again (stage ``surface``)
4. start the enabled listeners: HTTP, then HTTPS, then the channel
5. fire ``web.post-init``

``web.routing`` fires twice for two audiences. The ``setup`` firing is
for route registrars: routes added there sit in front of the error
fallback. The ``surface`` firing is for listeners that need the
finished pipeline and app, before any listener binds. Both payloads
carry a ``stage`` key so a listener can tell them apart.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from functools import partial
from pathlib import Path

from starlette.applications import Starlette
from starlette.requests import Request as StarletteRequest
from starlette.responses import PlainTextResponse, Response as StarletteResponse
from starlette.routing import Route

from .adapter import HttpRequest, HttpResponse, Request, Response
from .config import ServersConfig, load_config
from .errors import InitializationError
from .hooks import POST_INIT, PRE_INIT, ROUTING, ROUTING_INIT, HookBus
from .pipeline import NextFn, Pipeline, body_parser, error_fallback, method_override
from .transport import ChannelListener, HttpListener, HttpsListener, TransportListener

logger = logging.getLogger(__name__)

HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

Phase = tuple[str, Callable[[], Awaitable[None]]]


class SurfaceState(str, Enum):
    """Initialization progress of a web surface."""

    CREATED = "created"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


async def run_series(phases: list[Phase]) -> None:
    """Run async phases one after another.

    The first exception stops the series and is re-raised as is; later
    phases never run.
    """
    for name, phase in phases:
        logger.debug(f"Running phase {name}")
        await phase()


async def _end(err: BaseException | None = None) -> None:
    pass


class WebSurface:
    """HTTP, HTTPS and channel transports behind one pipeline."""

    def __init__(self, config: ServersConfig | None = None, hooks: HookBus | None = None):
        self.config = config or ServersConfig()
        self.hooks = hooks or HookBus()
        self.pipeline = Pipeline()
        self.app = self._create_app()
        self.http = HttpListener(self)
        self.https = HttpsListener(self)
        self.channel = ChannelListener(self)
        self.state = SurfaceState.CREATED

    @classmethod
    def from_config_file(cls, path: str | Path | None, hooks: HookBus | None = None) -> WebSurface:
        return cls(load_config(path), hooks)

    @property
    def listeners(self) -> list[TransportListener]:
        """All listeners in start order."""
        return [self.http, self.https, self.channel]

    def _create_app(self) -> Starlette:
        # The channel listener inserts its WebSocket route when it starts
        routes = [Route("/{path:path}", self._http_endpoint, methods=HTTP_METHODS)]
        return Starlette(routes=routes)

    # -------------------------------------------------------------------------
    # Initialization
    # -------------------------------------------------------------------------

    def _phases(self) -> list[Phase]:
        phases: list[Phase] = [
            ("pre-init", partial(self.hooks.fire, PRE_INIT, {"web": self})),
            ("setup-pipeline", self.setup_pipeline),
            (
                "routing",
                partial(
                    self.hooks.fire,
                    ROUTING,
                    {"web": self, "pipeline": self.pipeline, "app": self.app, "stage": "surface"},
                ),
            ),
        ]

        if self.config.http.enabled:
            phases.append(("start-http", self.http.start))
        if self.config.https.enabled:
            phases.append(("start-https", self.https.start))
        if self.config.socket.enabled:
            phases.append(("start-channel", self.channel.start))

        phases.append(("post-init", partial(self.hooks.fire, POST_INIT, {"web": self})))
        return phases

    async def initialize(self) -> None:
        """Bring the surface up.

        Raises:
            InitializationError: initialize() was already called
            Exception: Whatever a hook listener or listener start raised
        """
        if self.state is not SurfaceState.CREATED:
            raise InitializationError(f"Web surface cannot initialize from state {self.state.value}")

        self.state = SurfaceState.INITIALIZING
        logger.info(f"Initializing web surface ({', '.join(self.config.enabled_kinds()) or 'no transports'})")

        try:
            await run_series(self._phases())
        except Exception as e:
            self.state = SurfaceState.FAILED
            logger.error(f"Web surface initialization failed: {e}")
            raise

        self.state = SurfaceState.READY
        logger.info("Web surface ready")

    async def setup_pipeline(self) -> None:
        """Attach the stock middleware, collect routes, then the error fallback."""
        self.pipeline.use(body_parser)
        self.pipeline.use(method_override)
        self.pipeline.use(self._routing_init)

        await self.hooks.fire(
            ROUTING, {"web": self, "pipeline": self.pipeline, "stage": "setup"}
        )

        self.pipeline.use_error(error_fallback)

    async def _routing_init(self, request: Request, response: Response, next: NextFn) -> None:
        try:
            await self.hooks.fire(
                ROUTING_INIT, {"web": self, "request": request, "response": response}
            )
        except Exception as e:
            await next(e)
            return
        await next()

    # -------------------------------------------------------------------------
    # Request handling
    # -------------------------------------------------------------------------

    async def handle(self, request: Request, response: Response) -> None:
        """Run a request/response pair through the pipeline.

        Never raises: errors that escape the pipeline get the same
        fallback treatment as errors caught inside it.
        """
        try:
            await self.pipeline.handle(request, response)
        except Exception as e:
            await error_fallback(e, request, response, _end)

    async def _http_endpoint(self, request: StarletteRequest) -> StarletteResponse:
        req = await HttpRequest.from_starlette(request, self.pipeline)
        res = HttpResponse()

        await self.handle(req, res)

        if not res.finished:
            return PlainTextResponse(f"Cannot {req.method} {req.path}", status_code=404)
        return res.to_starlette()

    async def serve_forever(self) -> None:
        """Wait on the running HTTP/HTTPS servers."""
        tasks = [
            listener.handle.task
            for listener in (self.http, self.https)
            if listener.started and listener.handle.task is not None
        ]
        if not tasks:
            raise InitializationError("No HTTP or HTTPS listener is serving")
        await asyncio.gather(*tasks)
