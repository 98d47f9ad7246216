"""Shared middleware pipeline.

Every request, whichever transport delivered it, runs through one
ordered list of layers:

- middleware: ``async (request, response, next)``
- error handlers: ``async (err, request, response, next)``
- routes: middleware that only runs for a method and path template

A layer passes control on by awaiting ``next()``, or reports a failure
with ``next(err)`` (raising works too). Once an error is in flight only
error handlers run, until one of them finishes without passing it on.

Example:
    pipeline = Pipeline()
    pipeline.use(body_parser)

    @pipeline.get("/items/{item_id:int}")
    async def get_item(request, response, next):
        await response.json({"id": request.params["item_id"]})

    @pipeline.on("chat.message")
    async def chat(request, response, next):
        await response.send({"echo": request.body})
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl

from starlette.convertors import Convertor
from starlette.routing import compile_path

from .adapter import CHANNEL_METHOD, Request, Response

logger = logging.getLogger(__name__)

NextFn = Callable[..., Awaitable[None]]
Middleware = Callable[[Request, Response, NextFn], Awaitable[None]]
ErrorHandler = Callable[[BaseException, Request, Response, NextFn], Awaitable[None]]

FALLBACK_STATUS = 500
FALLBACK_BODY = {"error": "Something broke!"}

METHOD_OVERRIDE_HEADER = "x-http-method-override"
OVERRIDABLE_METHODS = frozenset({"GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"})


@dataclass
class Layer:
    """One entry in the pipeline."""

    handler: Callable[..., Awaitable[None]]
    method: str | None = None
    pattern: re.Pattern[str] | None = None
    convertors: dict[str, Convertor] | None = None
    prefix: str | None = None
    is_error_handler: bool = False

    @property
    def is_route(self) -> bool:
        return self.pattern is not None

    def match(self, request: Request) -> dict[str, Any] | None:
        """Return path params if this layer applies to the request, else None."""
        if self.method is not None:
            allowed = {self.method, "HEAD"} if self.method == "GET" else {self.method}
            if request.method not in allowed:
                return None

        path = request.path
        if self.pattern is not None:
            matched = self.pattern.match(path)
            if matched is None:
                return None
            convertors = self.convertors or {}
            return {
                key: convertors[key].convert(value) if key in convertors else value
                for key, value in matched.groupdict().items()
            }

        if self.prefix is not None:
            prefix = self.prefix.rstrip("/")
            if path != prefix and not path.startswith(prefix + "/"):
                return None

        return {}


class Pipeline:
    """Ordered middleware and route chain."""

    def __init__(self) -> None:
        self._layers: list[Layer] = []

    @property
    def layers(self) -> list[Layer]:
        return list(self._layers)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def use(self, middleware: Middleware, path: str | None = None) -> Middleware:
        """Append a middleware, optionally limited to a path prefix."""
        self._layers.append(Layer(handler=middleware, prefix=path))
        return middleware

    def use_error(self, handler: ErrorHandler) -> ErrorHandler:
        """Append an error handler."""
        self._layers.append(Layer(handler=handler, is_error_handler=True))
        return handler

    def route(self, method: str, path: str, handler: Middleware) -> Middleware:
        """Append a route for one method and a Starlette-style path template."""
        pattern, _, convertors = compile_path(path)
        self._layers.append(
            Layer(
                handler=handler,
                method=method.upper(),
                pattern=pattern,
                convertors=convertors,
            )
        )
        logger.debug(f"Registered route {method.upper()} {path}")
        return handler

    def _decorator(self, method: str, path: str) -> Callable[[Middleware], Middleware]:
        def decorator(handler: Middleware) -> Middleware:
            return self.route(method, path, handler)

        return decorator

    def get(self, path: str) -> Callable[[Middleware], Middleware]:
        return self._decorator("GET", path)

    def post(self, path: str) -> Callable[[Middleware], Middleware]:
        return self._decorator("POST", path)

    def put(self, path: str) -> Callable[[Middleware], Middleware]:
        return self._decorator("PUT", path)

    def patch(self, path: str) -> Callable[[Middleware], Middleware]:
        return self._decorator("PATCH", path)

    def delete(self, path: str) -> Callable[[Middleware], Middleware]:
        return self._decorator("DELETE", path)

    def on(self, event: str) -> Callable[[Middleware], Middleware]:
        """Route a channel event (``connect``, ``disconnect`` or a client event)."""
        return self._decorator(CHANNEL_METHOD, event)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def handle(self, request: Request, response: Response) -> None:
        """Run a request through the pipeline.

        Raises:
            Exception: An error that no error handler took care of
        """
        layers = list(self._layers)
        position = 0

        async def next_(err: BaseException | None = None) -> None:
            nonlocal position

            while position < len(layers):
                layer = layers[position]
                position += 1

                if layer.is_error_handler != (err is not None):
                    continue

                params = layer.match(request)
                if params is None:
                    continue
                if layer.is_route:
                    request.params = params

                try:
                    if err is None:
                        await layer.handler(request, response, next_)
                    else:
                        await layer.handler(err, request, response, next_)
                    return
                except Exception as e:
                    err = e

            if err is not None:
                raise err

        await next_()


# =============================================================================
# Stock middleware
# =============================================================================


def decode_body(body: bytes, content_type: str) -> Any:
    """Decode a raw request body according to its content type.

    Raises:
        ValueError: Malformed JSON or undecodable text
    """
    if not body:
        return {}
    if content_type == "application/json" or content_type.endswith("+json"):
        return json.loads(body)
    if content_type == "application/x-www-form-urlencoded":
        return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
    if content_type.startswith("text/"):
        return body.decode("utf-8")
    return body


async def body_parser(request: Request, response: Response, next: NextFn) -> None:
    """Decode raw HTTP bodies. Channel payloads arrive decoded and pass through."""
    if isinstance(request.body, (bytes, bytearray)):
        try:
            request.body = decode_body(bytes(request.body), request.content_type)
        except ValueError as e:
            await next(e)
            return
    await next()


async def method_override(request: Request, response: Response, next: NextFn) -> None:
    """Let POST requests name their real method in ``X-HTTP-Method-Override``."""
    if request.method == "POST":
        headers = getattr(request, "headers", {})
        override = (headers.get(METHOD_OVERRIDE_HEADER) or "").upper()
        if override in OVERRIDABLE_METHODS:
            request.original_method = request.method
            request.method = override
    await next()


async def error_fallback(
    err: BaseException, request: Request, response: Response, next: NextFn
) -> None:
    """Terminal error handler.

    Logs the failure for operators and answers with a fixed 500 body.
    The traceback is never sent to the client.
    """
    logger.error(f"Unhandled error while handling {request!r}: {err}", exc_info=err)

    if response.finished:
        return

    try:
        await response.status(FALLBACK_STATUS).send(dict(FALLBACK_BODY))
    except Exception:
        logger.exception(f"Failed to send fallback response for {request!r}")
