"""Exception hierarchy for the operator.

This module defines a framework-agnostic exception hierarchy that allows:
- Reconciler and poller code to raise errors without HTTP dependencies
- API routes to translate exceptions into appropriate HTTP status codes
- Tests to handle errors consistently

## Exception Hierarchy

All operator exceptions inherit from `OperatorError`:

- `ConfigurationError`: An application spec cannot be resolved (HTTP 400)
- `DeployError`: Creating a Flink cluster failed
- `SavepointError`: A savepoint operation failed or completed without a path
- `OperatorTimeoutError`: A bounded wait ran out (HTTP 504)

`UpstreamError` is re-exported from `foundation.exceptions`; clients raise it
when the Kubernetes API or a JobManager fails a call (HTTP 502).

## HTTP Mapping

```python
ConfigurationError       → HTTP 400 (Bad Request)
UpstreamError            → HTTP 502 (Bad Gateway)
OperatorTimeoutError     → HTTP 504 (Gateway Timeout)
OperatorError (base)     → HTTP 500 (Internal Server Error)
```

## Usage

```python
from core.exceptions import ConfigurationError, UpstreamError

if not spec.image_name:
    raise ConfigurationError("imageName is required")

try:
    jobs = rest_client.list_jobs()
except UpstreamError:
    logger.exception("Failed to list jobs")
```
"""

# Re-export UpstreamError from foundation for compatibility
from foundation.exceptions import UpstreamError  # noqa: F401


class OperatorError(Exception):
    """Base exception class for all operator errors.

    This exception maps to HTTP 500 (Internal Server Error) if not caught
    and translated by a more specific exception handler.
    """


class ConfigurationError(OperatorError):
    """Exception raised when an application spec cannot be resolved.

    Examples:
        - `imageName` or `jarURI` is missing
        - A resource memory quantity cannot be parsed
        - `rest.port` in `flinkConfig` is not an integer
    """


class DeployError(OperatorError):
    """Exception raised when the deployer fails to create a Flink cluster.

    The reconciler logs it and still records the application, so a later
    pass sees the partial deployment and does not create it twice.
    """


class SavepointError(OperatorError):
    """Exception raised when a savepoint operation fails.

    Covers a rejected trigger, a `FAILED` operation result, a completed
    operation without a location, and a savepoint that did not finish in time.
    """


class OperatorTimeoutError(OperatorError):
    """Exception raised when a bounded wait exceeds its timeout.

    Raised by the image-update protocol when the old JobManager Deployment
    does not disappear within the teardown timeout.

    Note:
        We use `OperatorTimeoutError` instead of Python's built-in
        `TimeoutError` to avoid conflicts and maintain our exception hierarchy.
    """
