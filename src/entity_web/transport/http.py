"""HTTP and HTTPS listeners.

Each listener binds its own socket and serves the surface's ASGI app
with a uvicorn server running as a background task. Requests arrive as
native request/response pairs and need no adapter.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
import ssl
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import uvicorn

from ..errors import TransportStartError
from .base import TransportKind, TransportListener

logger = logging.getLogger(__name__)

STARTUP_POLL_INTERVAL = 0.01


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the host process.

    Several servers share one event loop here; none of them may claim
    SIGINT/SIGTERM for itself.
    """

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


@dataclass
class ListenerHandle:
    """A bound, serving listener."""

    server: uvicorn.Server
    sockets: list[socket.socket] = field(default_factory=list)
    task: asyncio.Task | None = None

    @property
    def port(self) -> int:
        return self.sockets[0].getsockname()[1]


class HttpListener(TransportListener):
    """Plain HTTP listener."""

    kind = TransportKind.HTTP

    def _server_config(self) -> uvicorn.Config:
        http = self.surface.config.http
        try:
            port = http.resolve_port()
        except ValueError as e:
            raise TransportStartError(self.kind, f"invalid PORT value: {e}") from e

        return uvicorn.Config(
            self.surface.app,
            host=http.host,
            port=port,
            lifespan="off",
            log_config=None,
        )

    async def _open(self) -> ListenerHandle:
        config = self._server_config()

        try:
            config.load()
        except OSError as e:
            raise TransportStartError(self.kind, f"cannot load server config: {e}") from e

        try:
            sock = socket.create_server((config.host, config.port))
        except OSError as e:
            raise TransportStartError(
                self.kind, f"cannot bind {config.host}:{config.port}: {e}"
            ) from e

        server = _ListenerServer(config)
        task = asyncio.create_task(
            server.serve(sockets=[sock]), name=f"entity-web-{self.kind.value}"
        )

        try:
            await self._wait_started(server, task)
        except TransportStartError:
            sock.close()
            raise

        handle = ListenerHandle(server=server, sockets=[sock], task=task)
        logger.info(f"{self.kind.value.upper()} listening on {config.host}:{handle.port}")
        return handle

    async def _wait_started(self, server: uvicorn.Server, task: asyncio.Task) -> None:
        while not server.started:
            if task.done():
                cause = None if task.cancelled() else task.exception()
                raise TransportStartError(self.kind, "server exited during startup") from cause
            await asyncio.sleep(STARTUP_POLL_INTERVAL)


class HttpsListener(HttpListener):
    """HTTPS listener.

    Loads the configured key pair and asks clients for a certificate
    (``CERT_OPTIONAL``); validity is left to the TLS library.
    """

    kind = TransportKind.HTTPS

    def _server_config(self) -> uvicorn.Config:
        https = self.surface.config.https

        for label, path in (("key", https.ssl_key), ("certificate", https.ssl_cert)):
            if not Path(path).is_file():
                raise TransportStartError(self.kind, f"TLS {label} file not found: {path}")

        return uvicorn.Config(
            self.surface.app,
            host=https.host,
            port=https.port,
            ssl_keyfile=https.ssl_key,
            ssl_certfile=https.ssl_cert,
            ssl_cert_reqs=ssl.CERT_OPTIONAL,
            lifespan="off",
            log_config=None,
        )
