# ruff: noqa: D107
"""AI provider exceptions and provider error mapping."""

from typing import Any

from .base import BaseAppException


class AIServiceError(BaseAppException):
    """Base exception for completion and embedding provider failures."""

    def __init__(
        self,
        message: str = "AI service error occurred",
        error_code: str = "AI_SERVICE_ERROR",
        details: dict[str, Any] | None = None,
        status_code: int = 500,
    ):
        super().__init__(
            message=message, status_code=status_code, error_code=error_code, details=details
        )


class AIServiceUnavailableError(AIServiceError):
    """Exception raised when AI service is unavailable."""

    def __init__(
        self,
        message: str = "AI service is temporarily unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_SERVICE_UNAVAILABLE", details, status_code=503)


class AIQuotaExceededError(AIServiceError):
    """Exception raised when AI service quota is exceeded."""

    def __init__(
        self,
        message: str = "AI service quota exceeded",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_QUOTA_EXCEEDED", details, status_code=429)


class AITimeoutError(AIServiceError):
    """Exception raised when AI service request times out."""

    def __init__(
        self,
        message: str = "AI service request timed out",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_TIMEOUT", details, status_code=504)


class AIConfigurationError(AIServiceError):
    """Exception raised when AI service is not properly configured."""

    def __init__(
        self,
        message: str = "AI service is not properly configured",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONFIGURATION_ERROR", details, status_code=503)


class AIContentFilterError(AIServiceError):
    """Exception raised when content is blocked by AI safety filters."""

    def __init__(
        self,
        message: str = "Content was blocked by AI safety filters",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "AI_CONTENT_FILTERED", details, status_code=400)


class AIRateLimitError(AIServiceError):
    """Exception raised when AI service rate limit is hit."""

    def __init__(
        self,
        message: str = "AI service rate limit exceeded",
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        if details is None:
            details = {}
        if retry_after:
            details["retry_after"] = retry_after
        super().__init__(message, "AI_RATE_LIMITED", details, status_code=429)


class EmbeddingError(AIServiceError):
    """Embedding provider failure during indexing or retrieval."""

    def __init__(
        self,
        message: str = "Embedding request failed",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, "EMBEDDING_ERROR", details)


# Transient failures worth retrying when a caller opts into retries.
TRANSIENT_AI_ERRORS = (AIRateLimitError, AIServiceUnavailableError, AITimeoutError)


def map_provider_error(error: Exception) -> AIServiceError:
    """Translate a raw SDK exception into the AI exception family.

    Gemini raises ``google.api_core`` exceptions whose messages are the only
    stable signal, so classification is by message pattern.
    """
    if isinstance(error, AIServiceError):
        return error

    text = str(error)
    lowered = text.lower()
    details = {"provider_error": text}
    if "rate" in lowered and "limit" in lowered:
        return AIRateLimitError(f"AI rate limit exceeded: {text}", details=details)
    if "quota" in lowered or "resource_exhausted" in lowered or "429" in lowered:
        return AIQuotaExceededError(f"AI quota exceeded: {text}", details=details)
    if "safety" in lowered or "blocked" in lowered:
        return AIContentFilterError(f"Content blocked: {text}", details=details)
    if "unavailable" in lowered or "503" in lowered or "deadline" in lowered:
        return AIServiceUnavailableError(f"AI service unavailable: {text}", details=details)
    return AIServiceError(f"AI generation failed: {text}", details=details)
