"""Beacon - staged notifications for scheduled events."""

__version__ = "0.1.0"
