"""Transfer engine errors."""


class TransferError(Exception):
    """Base exception for transfer engine operations."""


class CopyError(TransferError):
    """Raised when a single file cannot be copied or verified."""


class CopyCancelledError(CopyError):
    """Raised by a byte copier when the in-flight copy was cancelled."""


class InvalidTransitionError(TransferError):
    """Raised when an orchestrator operation is not valid in its current state."""
