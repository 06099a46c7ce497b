"""Manifest journal errors."""


class ManifestError(Exception):
    """Base exception for manifest journal operations."""


class ManifestWriteError(ManifestError):
    """Raised when a journal flush cannot be written to the destination."""
