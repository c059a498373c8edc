"""Database management commands."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from beacon.cli.console import dim, success


def register(app: typer.Typer) -> None:
    """Register the db command group."""
    db_app = typer.Typer(help="Database management commands")

    @db_app.command("init")
    def db_init(
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Create any missing tables."""
        from beacon.cli.runtime import load_cli_config
        from beacon.runtime import create_database

        config = load_cli_config(config_path)
        database = create_database(config)

        async def do_init() -> None:
            await database.connect()
            try:
                await database.init_schema()
            finally:
                await database.disconnect()

        asyncio.run(do_init())
        dim(database.url)
        success("Database initialized")

    app.add_typer(db_app, name="db")
