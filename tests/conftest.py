"""Pytest configuration and shared fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from starlette.websockets import WebSocketState

from entity_web.config import HttpConfig, HttpsConfig, ServersConfig, SocketConfig


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def websocket() -> MagicMock:
    """A connected Starlette WebSocket stand-in."""
    ws = MagicMock()
    ws.scope = {}
    ws.headers = {}
    ws.client_state = WebSocketState.CONNECTED
    ws.accept = AsyncMock()
    ws.send_text = AsyncMock()
    ws.close = AsyncMock()
    return ws


@pytest.fixture
def all_transports_config(tmp_path) -> ServersConfig:
    """Config enabling HTTP, HTTPS and the channel on loopback."""
    key = tmp_path / "client.key"
    cert = tmp_path / "client.crt"
    key.write_text("key")
    cert.write_text("cert")
    return ServersConfig(
        http=HttpConfig(enabled=True, host="127.0.0.1", port=0),
        https=HttpsConfig(enabled=True, host="127.0.0.1", port=0, ssl_key=str(key), ssl_cert=str(cert)),
        socket=SocketConfig(enabled=True),
    )
