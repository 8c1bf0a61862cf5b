"""
Publishing Error Taxonomy

Structured errors raised by platform adapters and the publishing core:
- AuthError: bad or expired credentials (never retried automatically)
- RateLimitError: platform quota exhausted (retryable with backoff)
- ValidationError: content violates platform constraints after formatting
- NotFoundError: update/delete against a missing remote entity
- TransientNetworkError: timeouts and connection failures (retryable)
- UnsupportedOperationError: operation not offered by the platform
- UnsupportedContentError: no supported format can represent the content

Every error carries a stable `error_code` and a `retryable` flag. Queues
never retry non-retryable errors, and `RetryPolicy.skip_on_errors` can
stop retries for further codes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional


class PublishingError(Exception):
    """Base error for the publishing engine."""

    error_code: str = "PUBLISHING_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.platform = platform
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error_code": self.error_code,
            "message": self.message,
            "platform": self.platform,
            "retryable": self.retryable,
            "details": self.details,
        }


class AuthError(PublishingError):
    """Credentials rejected or expired."""

    error_code = "AUTH_ERROR"


class RateLimitError(PublishingError):
    """Platform rate limit hit."""

    error_code = "RATE_LIMITED"
    retryable = True

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        retry_after: Optional[float] = None,
        reset_time: Optional[datetime] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, platform=platform, details=details)
        self.retry_after = retry_after
        self.reset_time = reset_time


class ValidationError(PublishingError):
    """Formatted content violates the target platform's constraints."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        platform: Optional[str] = None,
        issues: Optional[list] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, platform=platform, details=details)
        self.issues = issues or []


class NotFoundError(PublishingError):
    """Remote entity no longer exists."""

    error_code = "NOT_FOUND"


class TransientNetworkError(PublishingError):
    """Timeout or connection failure."""

    error_code = "TRANSIENT_NETWORK"
    retryable = True


class UnsupportedOperationError(PublishingError):
    """Operation is not offered by the platform."""

    error_code = "UNSUPPORTED_OPERATION"


class UnsupportedContentError(PublishingError):
    """No supported format can represent the content."""

    error_code = "UNSUPPORTED_CONTENT"


class ConfigurationError(PublishingError):
    """Registry-level misconfiguration, raised at setup time."""

    error_code = "CONFIGURATION_ERROR"


def _parse_retry_after(headers: Mapping[str, str]) -> tuple[Optional[float], Optional[datetime]]:
    """Read Retry-After or X-RateLimit-Reset into (seconds, reset time)."""
    now = datetime.now(timezone.utc)

    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if retry_after:
        try:
            seconds = float(retry_after)
            return seconds, now + timedelta(seconds=seconds)
        except ValueError:
            pass

    reset = headers.get("X-RateLimit-Reset") or headers.get("x-ratelimit-reset")
    if reset:
        try:
            reset_time = datetime.fromtimestamp(float(reset), tz=timezone.utc)
            return max(0.0, (reset_time - now).total_seconds()), reset_time
        except (ValueError, OverflowError, OSError):
            pass

    return None, None


def error_from_status(
    status_code: int,
    message: str,
    platform: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
) -> PublishingError:
    """Map an HTTP error status to the matching publishing error."""
    headers = headers or {}
    details = {"status_code": status_code}

    if status_code in (401, 403):
        return AuthError(message, platform=platform, details=details)
    if status_code in (404, 410):
        return NotFoundError(message, platform=platform, details=details)
    if status_code == 429:
        retry_after, reset_time = _parse_retry_after(headers)
        return RateLimitError(
            message,
            platform=platform,
            retry_after=retry_after,
            reset_time=reset_time,
            details=details,
        )
    if status_code in (400, 422):
        return ValidationError(message, platform=platform, details=details)
    if status_code == 408 or status_code >= 500:
        return TransientNetworkError(message, platform=platform, details=details)

    return PublishingError(message, platform=platform, error_code=f"HTTP_{status_code}", details=details)


_TAXONOMY = (
    AuthError,
    RateLimitError,
    ValidationError,
    NotFoundError,
    TransientNetworkError,
    UnsupportedOperationError,
    UnsupportedContentError,
    ConfigurationError,
)


def is_retryable(error: BaseException) -> bool:
    """Taxonomy errors declare whether a retry can help; anything else is treated as transient."""
    return getattr(error, "retryable", True)


def is_retryable_code(error_code: Optional[str]) -> bool:
    """Retryability for an error known only by its code (e.g. from a PublishResult)."""
    for error_type in _TAXONOMY:
        if error_type.error_code == error_code:
            return error_type.retryable
    return True
