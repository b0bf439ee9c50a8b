"""
Error taxonomy for extraction and for the scrape/export service.

Extraction errors are raised by the pipeline itself. Service errors wrap
fetch and request problems and carry the HTTP status the API responds with.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class ExtractionError(Exception):
    """Base class for failures inside the extraction pipeline."""


class MissingField(ExtractionError):
    """A required field could not be resolved by any fallback strategy."""

    def __init__(self, field: str):
        super().__init__(f"Required field '{field}' could not be extracted")
        self.field = field


class InvalidSchema(ExtractionError):
    """An embedded state fragment was present but not the expected shape.

    Never fatal: the extractor logs it and carries on with other sources.
    """

    def __init__(self, fragment: str, reason: str):
        super().__init__(f"State fragment '{fragment}' has an unexpected shape: {reason}")
        self.fragment = fragment
        self.reason = reason


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class ScrapingError(Exception):
    def __init__(self, message: str, status: int = 500, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.details = details


class URLValidationError(Exception):
    pass


class ProductDataError(Exception):
    def __init__(self, message: str, field: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details


class BotProtectionError(Exception):
    def __init__(self, message: str, retry_after: int | None = None):
        super().__init__(message)
        self.message = message
        self.retry_after = retry_after


class NetworkError(Exception):
    def __init__(self, message: str, original: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original = original


def error_response(exc: Exception) -> tuple[int, dict[str, Any]]:
    """Map an exception to (HTTP status, JSON payload)."""
    logger.error("Request failed: %s: %s", type(exc).__name__, exc)

    if isinstance(exc, ScrapingError):
        payload: dict[str, Any] = {"message": exc.message}
        if exc.details:
            payload["details"] = exc.details
        return exc.status, payload

    if isinstance(exc, URLValidationError):
        return 400, {"message": str(exc)}

    if isinstance(exc, MissingField):
        return 422, {"message": str(exc), "field": exc.field}

    if isinstance(exc, ProductDataError):
        payload = {"message": f"{exc.field}: {exc.message}", "field": exc.field}
        if exc.details is not None:
            payload["details"] = exc.details
        return 422, payload

    if isinstance(exc, BotProtectionError):
        payload = {"message": exc.message}
        if exc.retry_after is not None:
            payload["retry_after"] = exc.retry_after
        return 403, payload

    if isinstance(exc, NetworkError):
        payload = {"message": exc.message}
        if exc.original is not None:
            payload["details"] = str(exc.original)
        return 503, payload

    return 500, {"message": "Unexpected error", "details": str(exc)}
