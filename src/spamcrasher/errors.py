"""
Exception hierarchy for spamcrasher.

Startup errors (:class:`ConfigError`) stop the process. Everything raised
while a single message is being decided is caught by the decision engine
and turned into a decision carrying an error reason.
"""

from __future__ import annotations


class SpamCrasherError(Exception):
    """Base class for all errors raised by spamcrasher."""


class ConfigError(SpamCrasherError):
    """Invalid or incomplete configuration detected at startup."""


class StoreUnavailable(SpamCrasherError):
    """The trust store could not be reached or refused the operation."""


class ClassifierError(SpamCrasherError):
    """A classification could not be produced.

    Attributes:
        provider: Name of the provider that failed, when known.
    """

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.provider = provider


class ProviderAuthError(ClassifierError):
    """Credentials were rejected. Never retried."""


class ProviderTransientError(ClassifierError):
    """Network failure, timeout or server-side error. Eligible for retry."""


class RateLimited(ClassifierError):
    """The local rate limiter could not grant a call within the allowed wait."""

    def __init__(self, message: str, *, provider: str | None = None, retry_after: float = 0.0) -> None:
        super().__init__(message, provider=provider)
        self.retry_after = retry_after


class ClassifierResponseError(ClassifierError):
    """The provider answered but no valid score could be read from the answer."""


class HistoryImportError(SpamCrasherError):
    """The history file is missing, malformed or could not be written."""


class EngineStopped(SpamCrasherError):
    """A message was submitted while the engine is not accepting work."""
