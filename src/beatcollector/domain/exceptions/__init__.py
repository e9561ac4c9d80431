"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, message is stored as an attribute so code can inspect it without
    # parsing str(exception). Don't raise this directly - use a specific subclass so
    # callers can catch precisely.
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when input or stored data fails validation."""

    pass


class InvalidEnumValueError(ValidationException):
    """Raised when a stored/received string is not a member of a closed enum.

    Hey future me - this is LOUD on purpose. If the DB contains "Owned" instead of
    "owned" we want the read to blow up, not quietly become NOT_OWNED. Schema drift
    shows up here first.
    """

    def __init__(self, enum_name: str, value: Any) -> None:
        super().__init__(f"Invalid {enum_name} value: {value!r}")
        self.enum_name = enum_name
        self.value = value


class InvalidStateException(DomainException):
    """Raised when an entity is in an invalid state for the requested operation.

    Example: marking a job Running after it already Completed.
    """

    pass


class ConfigurationError(DomainException):
    """Raised when required configuration or credentials are missing.

    Fatal for the job that hit it, never for the process.
    """

    pass


class QueueClosedError(ConfigurationError):
    """Raised when submitting to a job queue whose consumer has shut down."""

    def __init__(self, message: str = "Job queue is closed") -> None:
        super().__init__(message)


class ExternalServiceError(DomainException):
    """Raised when an external API call fails.

    retryable=True marks transient failures (timeouts, 5xx, rate limits). Nothing
    retries automatically - the flag is for whoever resubmits the job.
    """

    def __init__(
        self,
        service: str,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code
        self.retryable = retryable


class RateLimitExceededError(ExternalServiceError):
    """Raised after a server-side rate-limit signal (429/503) and one backoff sleep."""

    def __init__(self, service: str, retry_after: float | None = None) -> None:
        message = "rate limit exceeded"
        if retry_after is not None:
            message = f"rate limit exceeded (retry after {retry_after:.0f}s)"
        super().__init__(service, message, status_code=None, retryable=True)
        self.retry_after = retry_after


class TokenRefreshException(DomainException):
    """Raised when token refresh fails and re-authentication is required.

    Hey future me - Spotify says invalid_grant when the user revoked access or the
    refresh token was rotated away. No amount of retrying fixes that, the user has
    to connect again.
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-authenticate with Spotify.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.http_status = http_status


__all__ = [
    "ConfigurationError",
    "DomainException",
    "EntityNotFoundException",
    "ExternalServiceError",
    "InvalidEnumValueError",
    "InvalidStateException",
    "QueueClosedError",
    "RateLimitExceededError",
    "TokenRefreshException",
    "ValidationException",
]
