"""entity-web CLI.

Usage:
    entity-web serve                              # Defaults (HTTP on $PORT)
    entity-web serve --config servers.yaml        # Load transport config
    entity-web serve --hooks-module myapp.routes  # Register hook listeners
    entity-web config --config servers.yaml       # Show resolved config
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import json
import logging
import sys

import click

from .config import ServersConfig, load_config
from .hooks import HookBus
from .surface import WebSurface

logger = logging.getLogger(__name__)

config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML file with the servers configuration",
)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Logging level",
)
def main(log_level: str) -> None:
    """entity-web - HTTP, HTTPS and WebSocket channel behind one pipeline."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_hooks_module(hooks: HookBus, module_name: str) -> None:
    """Import a module and let its ``register(hooks)`` add listeners."""
    click.echo(f"Loading hook listeners from module {module_name}", err=True)

    try:
        mod = importlib.import_module(module_name)
    except ImportError as e:
        click.echo(f"Failed to import module {module_name}: {e}", err=True)
        sys.exit(1)

    register = getattr(mod, "register", None)
    if register is None:
        click.echo(f"Module {module_name} has no register(hooks) function", err=True)
        sys.exit(1)

    result = register(hooks)
    if inspect.isawaitable(result):
        asyncio.run(result)


async def _serve(surface: WebSurface) -> None:
    await surface.initialize()
    await surface.serve_forever()


@main.command()
@config_option
@click.option("--hooks-module", help="Python module exposing register(hooks)")
def serve(config_path: str | None, hooks_module: str | None) -> None:
    """Start the enabled transports and serve until interrupted."""
    hooks = HookBus()
    if hooks_module:
        _load_hooks_module(hooks, hooks_module)

    surface = WebSurface(load_config(config_path), hooks)
    click.echo(f"Starting entity-web ({', '.join(surface.config.enabled_kinds())})", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    try:
        asyncio.run(_serve(surface))
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)
    except Exception as e:
        logger.debug("Serve failed", exc_info=e)
        click.echo(f"Failed to start: {e}", err=True)
        sys.exit(1)


def _describe(config: ServersConfig) -> dict:
    return config.model_dump(by_alias=True)


@main.command("config")
@config_option
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
def show_config(config_path: str | None, output_json: bool) -> None:
    """Show the resolved servers configuration.

    Examples:

        entity-web config
        entity-web config --config servers.yaml --json
    """
    config = load_config(config_path)
    data = _describe(config)

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    click.echo("entity-web Configuration")
    click.echo("-" * 40)
    http = config.http
    https = config.https
    click.echo(f"HTTP:     {'enabled' if http.enabled else 'disabled'}  {http.host}:{http.port or '$PORT'}")
    click.echo(f"HTTPS:    {'enabled' if https.enabled else 'disabled'}  {https.host}:{https.port}")
    click.echo(f"  key:    {https.ssl_key}")
    click.echo(f"  cert:   {https.ssl_cert}")
    click.echo(
        f"Channel:  {'enabled' if config.socket.enabled else 'disabled'}  {config.socket.path}"
    )


if __name__ == "__main__":
    main()
