"""Error taxonomy shared by the clients, the sync layer and the app."""


class BookClubError(Exception):
    """Base class for errors surfaced to members as a message."""


class TransportError(BookClubError):
    """Network failure or non-2xx response from a remote service."""


class SearchTimeout(BookClubError):
    """The catalog search did not answer within its time budget."""


class RateLimited(BookClubError):
    """The remote API answered with HTTP 429."""

    def __init__(self, message: str = "Please wait a moment and try again."):
        super().__init__(message)


class ConfigurationError(BookClubError):
    """A required setting (usually an API key) is missing."""


class AuthorizationError(BookClubError):
    """The current identity may not perform the requested mutation."""


class EmptyImportError(BookClubError):
    """The spreadsheet held no data rows."""
