"""Exceptions raised by the web surface."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .transport.base import TransportKind


class WebSurfaceError(Exception):
    """Base class for web surface errors."""


class InitializationError(WebSurfaceError):
    """The surface cannot be initialized in its current state.

    Failures raised by hook listeners or listener starts during
    initialization are never wrapped in this class; they reach the
    caller as they were raised.
    """


class TransportStartError(WebSurfaceError):
    """A transport listener failed to start."""

    def __init__(self, kind: TransportKind, message: str):
        super().__init__(f"{kind.value} listener: {message}")
        self.kind = kind


class ChannelAttachError(TransportStartError):
    """The channel transport has no HTTP or HTTPS listener to ride on."""


class ResponseAlreadySentError(WebSurfaceError):
    """An HTTP response was sent more than once."""


class FrameError(WebSurfaceError, ValueError):
    """An inbound channel frame could not be decoded."""
