"""Error taxonomy shared by transports, the normalizer and the dispatcher."""
from __future__ import annotations


class CoCreatorError(RuntimeError):
    """Base exception for every failure raised by the orchestration layer."""


class TransportError(CoCreatorError):
    """Raised when a provider cannot be reached (connection refused, timeout)."""


class HttpStatusError(CoCreatorError):
    """Raised when a provider answers with a non-2xx status."""

    def __init__(self, code: int, provider_message: str | None = None):
        self.code = code
        self.provider_message = provider_message
        detail = provider_message or "no message"
        super().__init__(f"HTTP {code}: {detail}")


class ParseError(CoCreatorError):
    """Raised when model output does not contain parseable JSON."""

    def __init__(self, text: str, reason: str = "Invalid AI response format"):
        self.text = text
        super().__init__(reason)


class ValidationError(CoCreatorError):
    """Raised when a required field is missing after normalization."""


class FatalProviderError(CoCreatorError):
    """Permanent provider mismatch: unknown model/project, missing credentials."""


class ContentGenerationError(CoCreatorError):
    """Raised when image, story or video generation produced nothing usable."""


class ReconciliationError(CoCreatorError):
    """Raised when a refine cycle is requested in an invalid state."""
