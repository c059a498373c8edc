"""Main CLI application."""

import typer

from beacon.cli.commands import database, digest, events, serve

app = typer.Typer(
    name="beacon",
    help="Beacon - deferred multi-stage notifications",
    no_args_is_help=True,
)

serve.register(app)
events.register(app)
digest.register(app)
database.register(app)


if __name__ == "__main__":
    app()
