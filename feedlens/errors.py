"""Error taxonomy for the feed-analysis pipeline."""

from __future__ import annotations


class FeedLensError(RuntimeError):
    """Base class for failures that abort a feed request."""


class ConfigurationError(FeedLensError):
    """Raised when provider credentials are missing."""


class ProviderError(FeedLensError):
    """Raised when an external provider returns a non-success result."""

    def __init__(self, provider: str, status_code: int, body: str) -> None:
        super().__init__(f"{provider} API error: {status_code} - {body}")
        self.provider = provider
        self.status_code = status_code
        self.body = body


class ProviderUnavailableError(FeedLensError):
    """Raised when a provider cannot be reached or answers with an undecodable body."""

    def __init__(self, provider: str, reason: str) -> None:
        super().__init__(f"{provider} API unavailable: {reason}")
        self.provider = provider
        self.reason = reason


class EmptyResponseError(FeedLensError):
    """Raised when a provider call succeeds but carries no content."""


class AnnotationParseError(FeedLensError):
    """Raised when the annotation response is not the expected structure."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw
