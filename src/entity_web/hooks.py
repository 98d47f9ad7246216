"""Named extension points for the web surface.

Listeners subscribe to a hook name and are called, in registration
order, whenever the surface fires that hook. A firing stops at the first
listener that raises; the exception reaches whoever fired the hook.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

PRE_INIT = "web.pre-init"
ROUTING_INIT = "web.routing.init"
ROUTING = "web.routing"
POST_INIT = "web.post-init"
SOCKET_PRE_INIT = "web.socket.pre-init"

HookListener = Callable[[dict[str, Any]], Awaitable[None] | None]


def _listener_name(listener: HookListener) -> str:
    return getattr(listener, "__qualname__", None) or repr(listener)


class HookBus:
    """Registry of hook listeners with sequential, fail-fast firing."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[HookListener]] = {}

    def on(self, name: str, listener: HookListener) -> HookListener:
        """Register a listener for a hook.

        Returns the listener so this can be used as a decorator helper.
        """
        self._listeners.setdefault(name, []).append(listener)
        logger.debug(f"Registered listener {_listener_name(listener)} for {name}")
        return listener

    def off(self, name: str, listener: HookListener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(name)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listen(self, name: str) -> Callable[[HookListener], HookListener]:
        """Decorator form of :meth:`on`."""

        def decorator(listener: HookListener) -> HookListener:
            return self.on(name, listener)

        return decorator

    def listeners(self, name: str) -> list[HookListener]:
        """Listeners registered for a hook, in firing order."""
        return list(self._listeners.get(name, []))

    async def fire(self, name: str, payload: dict[str, Any]) -> None:
        """Fire a hook.

        Args:
            name: Hook name (e.g. ``web.pre-init``)
            payload: Passed to every listener

        Raises:
            Exception: Whatever the first failing listener raised
        """
        listeners = self.listeners(name)
        logger.debug(f"Firing {name} to {len(listeners)} listener(s)")

        for listener in listeners:
            try:
                result = listener(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Listener {_listener_name(listener)} failed on {name}: {e}")
                raise
