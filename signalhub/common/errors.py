"""
Error taxonomy for SignalHub.

Provider and cache failures are typed so callers can pick the right
recovery: retry (transient), rotate or fall back (quota), skip the item
(validation), or keep going with lower durability (cache degraded).
"""

from datetime import datetime
from typing import Optional


class SignalHubError(Exception):
    """Base class for SignalHub errors"""
    pass


class ConfigurationError(SignalHubError):
    """Missing credential or invalid setup; fatal for the affected subsystem"""
    pass


class TransientProviderError(SignalHubError):
    """Network blip, 5xx or timeout from an external provider"""
    pass


class QuotaExceededError(SignalHubError):
    """Rate limit or quota hit (429, or 403 with rate-limit semantics)"""

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        super().__init__(message)
        self.reset_at = reset_at


class NoTokenAvailableError(QuotaExceededError):
    """Every configured credential is exhausted.

    ``reset_at`` holds the earliest known reset so the caller can decide
    whether to wait or abort.
    """
    pass


class InvalidTokenError(SignalHubError):
    """A credential was rejected (401); distinct from exhaustion"""
    pass


class ContentValidationError(SignalHubError):
    """Malformed input such as empty text; skip the item and continue"""
    pass


class DimensionMismatchError(ContentValidationError):
    """Vector length does not match the configured model"""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class CacheDegradedError(SignalHubError):
    """Durable store unavailable; the caller falls back to a lower tier"""
    pass


PROVIDER_ERRORS = (TransientProviderError, QuotaExceededError, ContentValidationError)
