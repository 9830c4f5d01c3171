"""Namespace-scoped persistence layer for editable GTFS datasets."""

__version__ = "0.1.0"
