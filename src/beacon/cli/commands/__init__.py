"""CLI command modules."""

from beacon.cli.commands import database, digest, events, serve

__all__ = [
    "database",
    "digest",
    "events",
    "serve",
]
