"""Exception hierarchy for the relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""

    def __init__(self, message: str, request_id: int | None = None) -> None:
        super().__init__(message)
        self.request_id = request_id


class RelayBindError(RelayError):
    """Raised when the local endpoint cannot be bound. Not retried."""


class RelayTimeoutError(RelayError):
    """Raised when a wait elapsed without a matching response."""


class RelayClosedError(RelayError):
    """Raised when the broadcast bus shut down underneath an operation."""


class DuplicateWaitError(RelayError):
    """Raised when a wait is registered for an id that is already pending."""
