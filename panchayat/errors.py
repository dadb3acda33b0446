"""Error taxonomy shared by the client services.

Every error carries a human-readable message that can be shown to the user as-is.
"""


class PortalError(Exception):
    """Base class for recoverable, operation-level failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PortalError):
    """A required field is missing or malformed."""


class NoActiveChatError(ValidationError):
    def __init__(self, message: str = "No active chat"):
        super().__init__(message)


class NotFoundError(PortalError):
    """Unknown identifier."""


class AuthorizationError(PortalError):
    """Missing credentials or the caller does not own the resource."""


class NetworkError(PortalError):
    """Remote unreachable, timed out, or answered with an unexpected status."""


class OfflineError(PortalError):
    def __init__(self, message: str = "Cannot sync while offline"):
        super().__init__(message)


class RateLimitError(PortalError):
    """Upstream throttling (API rate limit or the AI backend)."""


class StorageFullError(PortalError):
    """A Local Store write would exceed its capacity."""
