"""Server configuration.

Each transport has its own frozen model. The aggregate is loaded once
and stays immutable for the lifetime of the web surface.

YAML layout (the ``servers:`` wrapper is optional)::

    servers:
      http:
        enabled: true
        port: 8080
      https:
        enabled: true
        port: 8443
        sslKey: ./certs/client.key
        sslCert: ./certs/client.crt
      socket:
        enabled: true
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_SSL_KEY = "./certs/client.key"
DEFAULT_SSL_CERT = "./certs/client.crt"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class HttpConfig(_FrozenModel):
    """Plain HTTP listener settings."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int | None = None

    def resolve_port(self, environ: Mapping[str, str] | None = None) -> int:
        """Return the port to bind.

        Falls back to the platform-assigned ``PORT`` variable, then to an
        ephemeral port chosen by the OS.

        Raises:
            ValueError: PORT is set but not an integer
        """
        if self.port is not None:
            return self.port

        env = os.environ if environ is None else environ
        value = env.get("PORT")
        if value:
            return int(value)

        logger.warning("No HTTP port configured and PORT is unset, using an ephemeral port")
        return 0


class HttpsConfig(_FrozenModel):
    """HTTPS listener settings."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 443
    ssl_key: str = Field(default=DEFAULT_SSL_KEY, alias="sslKey")
    ssl_cert: str = Field(default=DEFAULT_SSL_CERT, alias="sslCert")


class SocketConfig(_FrozenModel):
    """Bidirectional channel settings."""

    enabled: bool = False
    path: str = "/socket"


class ServersConfig(_FrozenModel):
    """Configuration for all three transports."""

    http: HttpConfig = Field(default_factory=HttpConfig)
    https: HttpsConfig = Field(default_factory=HttpsConfig)
    socket: SocketConfig = Field(default_factory=SocketConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> ServersConfig:
        """Build a config from a nested mapping, ignoring unknown keys."""
        return cls.model_validate(dict(data or {}))

    def enabled_kinds(self) -> list[str]:
        """Names of the enabled transports, in start order."""
        return [
            name
            for name, section in (("http", self.http), ("https", self.https), ("socket", self.socket))
            if section.enabled
        ]


def load_config(path: str | Path | None) -> ServersConfig:
    """Load server configuration from a YAML file.

    Args:
        path: YAML file to read. ``None`` or a missing file yields defaults.

    Returns:
        The frozen configuration.
    """
    if path is None:
        return ServersConfig()

    config_path = Path(path)
    if not config_path.exists():
        logger.info(f"Config file {config_path} not found, using defaults")
        return ServersConfig()

    with open(config_path) as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, Mapping):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    section = document.get("servers", document)
    return ServersConfig.from_mapping(section)
