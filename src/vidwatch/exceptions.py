"""Exception hierarchy for vidwatch.

Every collaborator the agent talks to (feed endpoint, SQLite, the desktop
notification server) has its own error family so call sites can catch
exactly the failures they know how to degrade from.
"""


class VidwatchError(Exception):
    """Base exception for vidwatch errors."""

    pass


class FetchError(VidwatchError):
    """Raised when the feed cannot be fetched or decoded."""

    pass


class BadResponseError(FetchError):
    """Raised when the feed endpoint answers with a non-success status."""

    def __init__(self, status_code: int, url: str = "") -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(f"Feed request failed with HTTP {status_code}")


class MalformedPayloadError(FetchError):
    """Raised when no JSON payload can be located inside the feed text."""

    pass


class NetworkUnavailableError(FetchError):
    """Raised when the feed endpoint cannot be reached."""

    pass


class StoreError(VidwatchError):
    """Base exception for persistent store errors."""

    pass


class StoreOpenError(StoreError):
    """Raised when the state database cannot be opened."""

    pass


class StoreTransactionError(StoreError):
    """Raised when a read or write transaction fails."""

    pass


class NotificationError(VidwatchError):
    """Base exception for notification errors."""

    pass


class NotificationDisplayError(NotificationError):
    """Raised when the desktop refuses to display a notification."""

    pass
