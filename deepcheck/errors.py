"""
deepcheck.errors – exception hierarchy shared by every sub-package.

Validation errors surface to the caller immediately.  Provider errors carry a
``transient`` flag that the detector's retry loop consults; they never escape
the detector, which demotes them to a fallback result instead.
"""
from __future__ import annotations


class DeepCheckError(Exception):
    """Base class for all service errors."""


class ConfigurationError(DeepCheckError):
    """Required configuration is missing or malformed (programmer error)."""


class MediaValidationError(DeepCheckError):
    """An upload was rejected before any network call was made."""

    def __init__(self, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(DeepCheckError):
    """The blob store refused or failed an upload."""


class PersistenceError(DeepCheckError):
    """A database read or write failed."""


class RecordNotFound(PersistenceError):
    """The requested row does not exist or is not owned by the caller."""


class InvalidStatusTransition(DeepCheckError):
    """A lifecycle state machine was asked to move backwards or out of a terminal state."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

class ProviderError(DeepCheckError):
    """Failure talking to the remote detection provider."""

    transient: bool = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, context: str) -> "ProviderError":
        """Classify an HTTP error status into the matching error type."""
        message = f"{context}: HTTP {status_code}"
        if status_code in (401, 403):
            return ProviderAuthError(message, status_code)
        if status_code >= 500 or status_code in (408, 429):
            return TransientProviderError(message, status_code)
        return ProviderError(message, status_code)


class TransientProviderError(ProviderError):
    """Gateway/server error worth retrying."""

    transient = True


class ProviderTimeout(TransientProviderError):
    """The provider exchange exceeded the configured timeout."""


class PollingExhausted(TransientProviderError):
    """The results endpoint never produced a body within the polling budget."""


class ProviderAuthError(ProviderError):
    """API key rejected (401/403) or malformed."""


class ProviderAnalysisFailed(ProviderError):
    """The provider reported a terminal failure for the analysis."""
