"""
Error taxonomy shared by the sync components and the HTTP layer.
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for request errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidArgument(SyncError):
    """Malformed or missing request field."""

    status_code = 400


class NotFound(SyncError):
    """Unknown family code."""

    status_code = 404
