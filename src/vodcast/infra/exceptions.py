"""
Custom exceptions for vodcast operations.

This module provides custom exception classes for the different failures
the channel can run into. Only ValidationError, ItemNotFoundError and
ContentSourceError ever reach an HTTP client; the rest are absorbed by the
coordinator.
"""


class VodcastError(Exception):
    """Base exception for all vodcast errors."""

    pass


class ValidationError(VodcastError):
    """Raised when a mutation payload fails validation."""

    pass


class UnknownActionError(ValidationError):
    """Raised when a mutation names an action that does not exist."""

    pass


class ItemNotFoundError(VodcastError):
    """Raised when a mutation targets an item id that is not in the catalog."""

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class StoreUnavailableError(VodcastError):
    """Raised by a store backend when it cannot be reached in time."""

    pass


class MalformedStateError(VodcastError):
    """Raised when a stored value cannot be decoded."""

    pass


class ContentSourceError(VodcastError):
    """Raised when the external catalog cannot be pulled."""

    pass


class ProbeError(VodcastError):
    """Raised when a media duration probe fails."""

    pass


class ServerUnavailableError(VodcastError):
    """Raised by the client when a poll cannot reach the server."""

    pass
