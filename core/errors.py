from __future__ import annotations


class ValidationError(ValueError):
    """A record or argument was rejected before any backend was touched."""


class StorageError(Exception):
    """Neither backend could serve the call."""
