"""Resumable crawler for paginated listing sites."""

__version__ = "0.1.0"
