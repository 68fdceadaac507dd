"""Exception classes for foundation utilities.

This module provides exception classes used by foundation components.
"""


class FoundationError(Exception):
    """Base exception class for foundation-related errors."""


class UpstreamError(FoundationError):
    """Exception raised when an upstream dependency service fails.

    This exception indicates that a required external service (the Kubernetes
    API server or a Flink JobManager REST endpoint) is unavailable, returned an
    error, or failed to complete a request.

    Attributes:
        status_code: HTTP status returned by the service, if it answered.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_client_error(self) -> bool:
        """True if the service answered with a 4xx status."""
        return self.status_code is not None and 400 <= self.status_code < 500


class PollTimeoutError(FoundationError):
    """Exception raised when a bounded poll gives up before its condition holds."""
