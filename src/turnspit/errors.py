from enum import Enum


class ErrorKind(str, Enum):
    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_CREDENTIALS = "invalid_credentials"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    CANCELLED = "cancelled"


class DispatchError(Exception):
    """Base class for every terminal state the dispatcher reports itself.

    ``kind`` is stable and meant for program logic; ``message`` is plain text
    a UI may show as-is. ``attempts`` holds the RequestAttempt records made
    before giving up (empty when no provider call happened).
    """

    kind: ErrorKind
    default_message: str = "Request failed."

    def __init__(self, message: str | None = None, attempts=()):
        self.message = message or self.default_message
        self.attempts = tuple(attempts)
        super().__init__(self.message)


class MissingCredentials(DispatchError):
    kind = ErrorKind.MISSING_CREDENTIALS
    default_message = "API Key is missing. Please click the 'API Key' button to add one."


class InvalidCredentials(DispatchError):
    kind = ErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid API Key. Please click the 'API Key' button to update it."


class QuotaExceeded(DispatchError):
    kind = ErrorKind.QUOTA_EXCEEDED
    default_message = (
        "API quota exceeded for every key. Please wait a moment or add more keys."
    )


class ProviderUnavailableError(DispatchError):
    kind = ErrorKind.PROVIDER_UNAVAILABLE
    default_message = "The AI provider is temporarily unavailable. Please try again later."


class Cancelled(DispatchError):
    kind = ErrorKind.CANCELLED
    default_message = "Request cancelled."
