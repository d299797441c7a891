"""
Exception types raised by the matching pipeline.

DecodeError and TransportError abort a single query and are meant to be
surfaced to the user. ValidationError is raised before any network I/O.
DataError is raised while loading the catalog and should stop startup.
"""


class VisualMatchError(Exception):
    """Base class for all pipeline errors."""


class DecodeError(VisualMatchError):
    """Image bytes or arrays could not be rendered onto the analysis canvas."""


class ValidationError(VisualMatchError):
    """A URL was malformed or uses a disallowed scheme."""


class TransportError(VisualMatchError):
    """Fetching a remote image failed or returned a non-success status."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class DataError(VisualMatchError):
    """A catalog record is missing fields or carries a malformed embedding."""
