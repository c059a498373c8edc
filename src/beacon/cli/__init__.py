"""Command-line interface."""

from beacon.cli.app import app

__all__ = ["app"]
