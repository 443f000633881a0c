"""
Error taxonomy for the converter service.

Every failure the service reports to a client is a RelayError subclass with:
- An error code for categorization
- A detailed message for logging
- A short user-facing message safe to return in a response body
- The HTTP status code it maps to
"""

from enum import Enum
from typing import Optional, Dict, Any

import structlog

logger = structlog.get_logger()


class ErrorCode(Enum):
    """
    Enumeration of all error codes the service reports.

    Organized by category:
    - Client errors: bad input, missing credentials, throttling
    - Upstream errors: resolver and media download failures
    - System errors: local failures (disk, transcoder)
    """

    # Client errors (4xx)
    INVALID_REQUEST = "INVALID_REQUEST"
    INVALID_URL = "INVALID_URL"
    UNAUTHORIZED = "UNAUTHORIZED"
    RATE_LIMITED = "RATE_LIMITED"

    # Upstream errors
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    TOO_MANY_REDIRECTS = "TOO_MANY_REDIRECTS"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


CONVERSION_FAILED_MESSAGE = "Conversion failed. Please check the URL and try again."


class RelayError(Exception):
    """
    Base exception for every reportable failure.

    Example:
        >>> raise InvalidRequestError(
        ...     "quality parameter was 'abc'",
        ...     user_message="Unsupported audio quality",
        ... )
    """

    default_code = ErrorCode.INTERNAL_ERROR
    default_user_message = "Internal server error"
    status_code = 500

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        """
        Args:
            message: Detailed error message for logging (never sent to clients)
            user_message: Optional override for the client-facing message
            details: Additional context for the logs
            code: Optional override for the error code
        """
        self.code = code or self.default_code
        self.message = message
        self.details = details or {}
        self.user_message = user_message or self.default_user_message
        super().__init__(self.message)

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        """Extra response headers for this error, if any."""
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Client-facing body. Only the short message leaves the process."""
        return {"error": self.user_message}

    def log_error(self, **context: Any) -> None:
        """
        Log error with a level matching its category.

        Client errors are warnings, everything else is an error.
        """
        log = logger.warning if self.status_code < 500 else logger.error
        log(
            "relay_error",
            error_code=self.code.value,
            status_code=self.status_code,
            message=self.message,
            details=self.details,
            **context,
        )

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidRequestError(RelayError):
    """Malformed or missing request parameters."""

    default_code = ErrorCode.INVALID_REQUEST
    default_user_message = "Invalid request"
    status_code = 400


class InvalidUrlError(InvalidRequestError):
    """The input is not a supported YouTube URL or video ID."""

    default_code = ErrorCode.INVALID_URL
    default_user_message = "Invalid YouTube URL"


class Unauthorized(RelayError):
    """Missing, unknown or expired session token, or a wrong password."""

    default_code = ErrorCode.UNAUTHORIZED
    default_user_message = "Unauthorized"
    status_code = 401

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"WWW-Authenticate": "Session"}


class RateLimited(RelayError):
    """The client exceeded its request ceiling for the current window."""

    default_code = ErrorCode.RATE_LIMITED
    default_user_message = "Too many requests. Please wait before trying again."
    status_code = 429

    def __init__(self, message: str, retry_after: int = 0, **kwargs: Any):
        self.retry_after = max(int(retry_after), 0)
        super().__init__(message, **kwargs)

    @property
    def headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(self.retry_after)}


class ResolutionError(RelayError):
    """
    The resolver could not produce a usable media link.

    user_fault marks failures caused by the requested content itself
    (private, removed, live) so they map to 400 instead of 500.
    """

    default_code = ErrorCode.RESOLUTION_FAILED
    default_user_message = CONVERSION_FAILED_MESSAGE

    def __init__(self, message: str, user_fault: bool = False, **kwargs: Any):
        self.user_fault = user_fault
        super().__init__(message, **kwargs)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return 400 if self.user_fault else 500


class DownloadError(RelayError):
    """Network failure while fetching the resolved media."""

    default_code = ErrorCode.DOWNLOAD_FAILED
    default_user_message = CONVERSION_FAILED_MESSAGE
    status_code = 500


class TooManyRedirectsError(DownloadError):
    """The resolved download URL redirected more often than allowed."""

    default_code = ErrorCode.TOO_MANY_REDIRECTS


class InternalError(RelayError):
    """Unexpected local failure (disk full, transcoder missing, ...)."""

    default_code = ErrorCode.INTERNAL_ERROR
    default_user_message = CONVERSION_FAILED_MESSAGE
    status_code = 500
