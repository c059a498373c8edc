"""Server command for running the notification scheduler."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        console_only: Annotated[
            bool,
            typer.Option(
                "--console",
                help="Print notifications instead of using the webhook",
            ),
        ] = False,
    ) -> None:
        """Start the scheduler: timers, reconciliation sweep and digest."""
        try:
            asyncio.run(_run_server(config, console_only))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(config_path: Path | None = None, console_only: bool = False) -> None:
    """Run the scheduler until SIGINT/SIGTERM."""
    import signal as signal_module

    from beacon.logging import configure_logging

    # Configure logging with Rich for colorful server output and file logging
    configure_logging(use_rich=True, log_to_file=True)

    from beacon.cli.runtime import load_cli_config
    from beacon.runtime import NotificationRuntime, create_dispatcher

    logger.info("Loading configuration")
    config = load_cli_config(config_path)

    dispatcher = create_dispatcher(config, console=console_only)
    runtime = NotificationRuntime(config, dispatcher)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    shutdown_count = 0

    def handle_signal() -> None:
        nonlocal shutdown_count
        shutdown_count += 1

        if shutdown_count == 1:
            # First signal: graceful shutdown
            logger.info("server_shutting_down")
            stop_event.set()
        else:
            # Second signal: force immediate exit
            logger.warning("server_force_shutdown")
            import os

            os._exit(1)

    for sig in (signal_module.SIGTERM, signal_module.SIGINT):
        loop.add_signal_handler(sig, handle_signal)

    try:
        await runtime.start()
        logger.info(
            "server_started",
            extra={
                "database.url": runtime.database.url,
                "dispatcher": type(dispatcher).__name__,
            },
        )
        await stop_event.wait()
    finally:
        await runtime.stop()
        if aclose := getattr(dispatcher, "aclose", None):
            await aclose()
        for sig in (signal_module.SIGTERM, signal_module.SIGINT):
            loop.remove_signal_handler(sig)
