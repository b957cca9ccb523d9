"""
Exception hierarchy for photoindex.

Every error raised across the store, detection, search and trash layers
derives from PhotoIndexError so callers (CLI, daemon) can catch one type.
"""


class PhotoIndexError(Exception):
    """Base exception for photoindex operations."""
    pass


class NotFoundError(PhotoIndexError):
    """Raised when an operation references a photo or group that does not exist."""
    pass


class InvalidInputError(PhotoIndexError):
    """Raised for malformed arguments: bad embedding bytes, mismatched
    dimensionality, non-positive limits, negative thresholds."""
    pass


class StorageFailureError(PhotoIndexError):
    """Raised when the underlying persistence layer is unavailable or fails."""
    pass
