"""Command line entry point."""

from __future__ import annotations

import asyncio
from dataclasses import replace
import logging
from pathlib import Path
from typing import Optional

import typer

from mihomo_helper.core.config import HelperConfig, load_config
from mihomo_helper.core.diagnostics import collect_diagnostics
from mihomo_helper.core.errors import AppError
from mihomo_helper.core.executor import NetworkSetupExecutor
from mihomo_helper.core.logging_setup import setup_logging
from mihomo_helper.core.storage import get_log_path
from mihomo_helper.server.routes import create_app
from mihomo_helper.server.socket_manager import SocketManager

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=False,
    help="Privileged helper that applies system proxy settings on request.",
)


def _resolve_config(
    config_path: Optional[Path],
    socket_path: Optional[str],
    log_level: Optional[str],
    grace: Optional[float],
) -> HelperConfig:
    try:
        config = load_config(config_path)
    except AppError as exc:
        typer.echo(f"Invalid configuration: {exc.user_message}", err=True)
        raise typer.Exit(code=2) from exc
    overrides: dict[str, object] = {}
    if socket_path:
        overrides["socket_path"] = socket_path
    if log_level:
        overrides["log_level"] = log_level
    if grace is not None:
        overrides["shutdown_grace_s"] = grace
    return replace(config, **overrides) if overrides else config


async def _serve(config: HelperConfig) -> None:
    executor = NetworkSetupExecutor(config.networksetup_path, timeout_s=config.command_timeout_s)
    manager = SocketManager(
        create_app(executor),
        config.socket_path,
        mode=config.socket_mode,
        shutdown_grace_s=config.shutdown_grace_s,
        verify_delay_s=config.rebind_verify_delay_s,
    )
    await manager.serve_until_stopped()


@app.command()
def serve(
    socket_path: Optional[str] = typer.Option(None, "--socket", help="Unix socket path."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="JSON config file."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level."),
    grace: Optional[float] = typer.Option(None, "--grace", min=0, help="Shutdown grace period in seconds."),
) -> None:
    """Serve proxy configuration requests on the helper socket."""
    config = _resolve_config(config_path, socket_path, log_level, grace)
    setup_logging(get_log_path(), config.log_level)
    logger.info("Starting mihomo-party-helper server")
    try:
        asyncio.run(_serve(config))
    except AppError as exc:
        logger.error("Failed to start server: %s", exc)
        raise typer.Exit(code=1) from exc


@app.command()
def diagnostics(
    config_path: Optional[Path] = typer.Option(None, "--config", help="JSON config file."),
) -> None:
    """Print a diagnostics report."""
    config = _resolve_config(config_path, None, None, None)
    typer.echo(collect_diagnostics(config))


def run() -> None:
    app()
