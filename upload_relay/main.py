"""
Main entry point for the upload relay.

This module provides the command-line interface: running the API server,
managing configuration files, probing a running server, and uploading a
local file through a server-issued signed URL.
"""

import asyncio
import logging
import mimetypes
import os
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
import typer
import uvicorn

from .application.container import Container
from .application.startup import ApplicationStartup
from .core.domain.attachments import UploadDestination
from .core.domain.messages import BridgeEvent, EncodeCommand, EventKind
from .core.domain.sessions import FileHandle
from .core.exceptions import StoreUnavailable
from .core.services import CommandDispatcher, MessageBridge
from .infrastructure.config.loader import ConfigLoader
from .infrastructure.config.models import ApplicationConfig
from .infrastructure.logging.setup import setup_logging
from .infrastructure.services.upload import (
    AiohttpUploadTransport, FileContentReader, UploadSessionManager
)
from .presentation.api.app import create_app

_UVICORN_LEVELS = {
    "TRACE": "trace",
    "DEBUG": "debug",
    "INFO": "info",
    "SUCCESS": "info",
    "WARNING": "warning",
    "ERROR": "error",
    "CRITICAL": "critical",
}

cli = typer.Typer(
    name="upload-relay",
    help="Signed-URL broker, attachment registry and upload client"
)

logger = logging.getLogger(__name__)


@cli.command()
def serve(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="Configuration file path"
    ),
    host: Optional[str] = typer.Option(None, "--host", help="Server host address"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Server port"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug mode")
) -> None:
    """Start the upload relay server."""
    try:
        config = ConfigLoader().load_config(config_file)
    except (OSError, ValueError) as e:
        typer.echo(f"Cannot load configuration: {e}", err=True)
        sys.exit(1)

    if host:
        config.server.host = host
    if port:
        config.server.port = port
    if log_level:
        config.logging.level = log_level.upper()
    if debug:
        config.debug = True
        config.logging.level = "DEBUG"

    setup_logging(config.logging)

    logger.info(f"Starting {config.name} v{config.version}")
    logger.info(f"Environment: {config.environment}, storage: {config.storage.backend}")

    try:
        asyncio.run(run_application(config))
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except StoreUnavailable as e:
        logger.error(f"Object store unavailable: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Application failed to start: {e}")
        sys.exit(1)


@cli.command()
def init_config(
    output: str = typer.Option("config.yaml", "--output", "-o", help="Output configuration file"),
    format: str = typer.Option("yaml", "--format", "-f", help="Configuration format (yaml/json)")
) -> None:
    """Generate a default configuration file."""
    try:
        ConfigLoader().save_config(ApplicationConfig(), output, format)
        typer.echo(f"Default configuration saved to {output}")
    except ValueError as e:
        typer.echo(f"Error saving configuration: {e}", err=True)
        sys.exit(1)


@cli.command()
def validate_config(
    config_file: str = typer.Argument(..., help="Configuration file to validate")
) -> None:
    """Validate a configuration file."""
    try:
        config = ConfigLoader().load_config(config_file)
    except (OSError, ValueError) as e:
        typer.echo(f"Configuration validation failed: {e}", err=True)
        sys.exit(1)

    typer.echo(f"Configuration file {config_file} is valid")
    typer.echo(f"Application: {config.name} v{config.version}")
    typer.echo(f"Environment: {config.environment}")
    typer.echo(f"Storage backend: {config.storage.backend}")


@cli.command()
def health_check(
    server: str = typer.Option("http://localhost:3003", "--server", "-s", help="Server URL"),
    timeout: float = typer.Option(10.0, "--timeout", help="Request timeout")
) -> None:
    """Check the health of a running server."""

    async def check_health() -> bool:
        url = f"{server.rstrip('/')}/health/"
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        typer.echo(f"Server returned status {response.status}")
                        return False
                    data = await response.json()
                    typer.echo(f"Server is healthy: {data.get('status', 'unknown')}")
                    return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            typer.echo(f"Health check failed: {e}")
            return False

    if not asyncio.run(check_health()):
        sys.exit(1)


@cli.command()
def upload(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True,
                                help="File to upload"),
    server: str = typer.Option("http://localhost:3003", "--server", "-s", help="Server URL"),
    content_type: Optional[str] = typer.Option(
        None, "--content-type", help="Content type (guessed from the name by default)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Transfer timeout in seconds")
) -> None:
    """Upload a file through a signed URL issued by a running server."""
    resolved_type = content_type or mimetypes.guess_type(file.name)[0] or "application/octet-stream"
    if not asyncio.run(upload_file(file, server, resolved_type, timeout)):
        sys.exit(1)


async def request_grant(server: str, file_name: str, content_type: str,
                        timeout: Optional[float] = None) -> Dict[str, Any]:
    """Ask a server for a signed upload URL."""
    url = f"{server.rstrip('/')}/signed-upload-url"
    async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session:
        async with session.post(url, json={"contentType": content_type, "fileName": file_name}) as response:
            response.raise_for_status()
            data = await response.json()
    return data["signedUrl"]


async def upload_file(path: Path, server: str, content_type: str,
                      timeout: Optional[float] = None) -> bool:
    """
    Upload one file: request a grant, then encode and transmit it through
    the message bridge and an upload session manager.

    Returns:
        True if the upload completed
    """
    try:
        grant = await request_grant(server, path.name, content_type, timeout)
    except (aiohttp.ClientError, asyncio.TimeoutError, KeyError) as e:
        typer.echo(f"Cannot obtain a signed upload URL: {e}", err=True)
        return False

    destination = UploadDestination.from_dict({
        "url": grant["signedUrl"],
        "method": grant.get("method", "PUT"),
        "bodyEncoding": grant.get("bodyEncoding", "raw"),
        "responseFormat": grant.get("responseFormat", "none"),
        "headers": grant.get("headers", {}),
    })

    dispatcher = CommandDispatcher()
    bridge = MessageBridge(dispatcher)
    transport = AiohttpUploadTransport(request_timeout=timeout)
    manager = UploadSessionManager(bridge, FileContentReader(), transport)
    manager.register_handlers(dispatcher)

    upload_id = str(uuid.uuid4())
    done = asyncio.Event()
    outcome: Dict[str, Any] = {}

    def on_event(event: BridgeEvent) -> None:
        if event.kind is EventKind.PROGRESS:
            typer.echo(f"\r{path.name}: {event.data:5.1f}%", nl=False)
        elif event.kind is EventKind.ENCODE and not event.is_terminal:
            typer.echo(f"{path.name}: encoded")
        elif event.is_terminal or event.kind is EventKind.ERROR:
            outcome["data"] = event.data
            outcome["ok"] = event.kind is EventKind.UPLOAD and not (
                isinstance(event.data, dict) and ("error" in event.data or "cancelled" in event.data))
            done.set()

    components = (dispatcher, bridge, transport, manager)
    for component in components:
        await component.start()

    try:
        await bridge.subscribe(on_event, upload_id=upload_id)
        await bridge.send(EncodeCommand(
            upload_id=upload_id,
            file=FileHandle.from_path(os.fspath(path), content_type=content_type),
            chain_to=destination,
            additional_data=path.name,
        ))
        await done.wait()
    finally:
        for component in reversed(components):
            await component.stop()

    typer.echo("")
    if outcome.get("ok"):
        typer.echo(f"Uploaded {path.name} as {grant['reference']}")
        return True

    typer.echo(f"Upload failed: {outcome.get('data')}", err=True)
    return False


async def run_application(config: ApplicationConfig) -> None:
    """
    Run the API server with the given configuration.

    Raises:
        StoreUnavailable: If the object store is misconfigured
    """
    container = Container()
    startup = ApplicationStartup(container)

    await startup.configure_services(config)
    app = create_app(container, config, startup=startup)

    server_config = uvicorn.Config(
        app=app,
        host=config.server.host,
        port=config.server.port,
        log_level=_UVICORN_LEVELS.get(config.logging.level.upper(), "info"),
        log_config=None,
        access_log=config.debug
    )
    await uvicorn.Server(server_config).serve()


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
