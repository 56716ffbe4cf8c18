"""Exceptions raised by the bookmark client."""


class BookmarkClientError(Exception):
    """Base class for all bookmark client errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class SessionError(BookmarkClientError):
    """
    Raised when there is no usable authenticated session.

    Not fatal: callers treat it as "signed out" and show the login view.
    """


class FetchError(BookmarkClientError):
    """Raised when the bookmark list could not be fetched."""


class MutationError(BookmarkClientError):
    """Raised when a create or delete request was not confirmed by the server."""


class SubscriptionError(BookmarkClientError):
    """Raised when the change stream connection fails or is closed by the server."""
