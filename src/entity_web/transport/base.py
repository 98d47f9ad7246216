"""Transport listener base class."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..surface import WebSurface

logger = logging.getLogger(__name__)


class TransportKind(str, Enum):
    """The three ways a request can reach the pipeline."""

    HTTP = "http"
    HTTPS = "https"
    CHANNEL = "channel"


class TransportListener(ABC):
    """Owns one listening resource for the web surface.

    ``start`` is idempotent: the resource is opened on the first
    successful call and later calls return without side effects, including
    calls that overlap an open still in progress. A failed start leaves the
    listener unstarted and may be retried. There is no stop; a listener
    lives as long as the process.
    """

    kind: TransportKind

    def __init__(self, surface: WebSurface):
        self.surface = surface
        self._handle: Any = None
        self._start_lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._handle is not None

    @property
    def handle(self) -> Any:
        """The opened resource, or None before the first successful start."""
        return self._handle

    async def start(self) -> None:
        """Open the listening resource unless already open."""
        async with self._start_lock:
            if self._handle is not None:
                logger.debug(f"{self.kind.value} listener already started")
                return

            self._handle = await self._open()
            logger.info(f"{self.kind.value} listener started")

    @abstractmethod
    async def _open(self) -> Any:
        """Open the resource and return its handle."""
