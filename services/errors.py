"""
Error taxonomy for curation jobs.

Only TransportError is retryable. CancellationError is never reported as a
failure. NotFoundError means a record vanished from the dataset mid-job.
"""

from typing import Optional


class CurationError(Exception):
    """Base class for workbench errors."""


class CancellationError(CurationError):
    """The operation was aborted through its cancel token."""


class TransportError(CurationError):
    """A model call failed at the transport level (network, HTTP status, bad stream)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(CurationError):
    """A record id is no longer present in the dataset."""

    def __init__(self, item_id: str):
        super().__init__(f"Record not found: {item_id}")
        self.item_id = item_id
