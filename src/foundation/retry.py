"""Retry and bounded polling on top of tenacity.

Two kinds of waiting happen in the operator:

- **Retrying a call** that failed transiently: Kubernetes API reads hitting a
  restarting API server, throttling, dropped connections. `RetryWithBackoff`
  retries with exponential backoff; an `ErrorClassifier` decides which
  failures are transient, so a 404 or 403 fails on the first attempt.
- **Waiting for convergence** of an external system: the old JobManager
  Deployment disappearing during an image update, a savepoint operation
  completing. `poll_until` / `poll_for_value` check at a fixed interval within
  an overall deadline and raise `PollTimeoutError` when it passes.

```python
retry = RetryWithBackoff(classifier=KubernetesErrorClassifier())
deployment = retry.call(apps_api.read_namespaced_deployment, name, namespace)

poll_until(
    lambda: not deployments.exists(namespace, name),
    interval_s=3.0,
    timeout_s=300.0,
    description="deployment teardown",
)
```
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import partial
from typing import Any, Protocol, TypeVar, runtime_checkable

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    stop_after_delay,
    wait_exponential,
    wait_fixed,
)

from foundation.exceptions import PollTimeoutError

T = TypeVar("T")

DEFAULT_RETRY_EXCEPTIONS: tuple[type[Exception], ...] = (Exception,)

# Throttling and the 5xx family a restarting API server or gateway returns
RETRIABLE_HTTP_STATUS_CODES: frozenset[str] = frozenset({"429", "500", "502", "503", "504"})


@runtime_checkable
class ErrorClassifier(Protocol):
    """Decides which failures are worth another attempt."""

    def is_retriable(self, exc: BaseException) -> bool: ...

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        """Return extra log fields describing `exc` (may be empty)."""
        ...


class HTTPErrorClassifier(ABC):
    """Classifier base for clients whose errors carry an HTTP status.

    Subclasses map their exception type to a status and delegate to
    `is_retriable_http_status()`. Unknown or missing statuses fail fast.
    """

    retriable_http_codes: frozenset[str] = RETRIABLE_HTTP_STATUS_CODES

    def is_retriable_http_status(self, status: str | int | None) -> bool:
        return status is not None and str(status) in self.retriable_http_codes

    @abstractmethod
    def is_retriable(self, exc: BaseException) -> bool: ...

    @abstractmethod
    def get_error_details(self, exc: BaseException) -> dict[str, Any]: ...


def create_retry_logger(
    logger: logging.Logger,
    get_error_details: Callable[[BaseException], dict[str, Any]] | None = None,
    message: str = "Operation failed, retrying",
) -> Callable[[Any], None]:
    """Build a tenacity `before_sleep` callback logging each failed attempt.

    Args:
        logger: Logger to write to.
        get_error_details: Optional extractor of extra fields from the
            exception (e.g. the API status).
        message: Log message.
    """

    def log_retry(retry_state: Any) -> None:
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return
        exc = retry_state.outcome.exception()
        wait_time = retry_state.next_action.sleep if retry_state.next_action else 0
        extra: dict[str, Any] = {
            "attempt": retry_state.attempt_number,
            "wait_seconds": round(wait_time, 2),
            "error_type": type(exc).__name__,
        }
        if get_error_details is not None:
            extra.update(get_error_details(exc))
        logger.warning(message, extra=extra)

    return log_retry


# =============================================================================
# RetryWithBackoff
# =============================================================================


class RetryWithBackoff:
    """Retry utility with exponential backoff and structured logging.

    Attributes:
        max_attempts: Maximum number of attempts (default: 3).
        wait_min: Minimum wait time between retries in seconds (default: 1.0).
        wait_max: Maximum wait time between retries in seconds (default: 10.0).
        multiplier: Exponential backoff multiplier (default: 1.0).
        retry_exceptions: Exception types to retry on when no classifier is set.
        classifier: Optional ErrorClassifier deciding which failures are
            transient. Takes precedence over `retry_exceptions`.
        logger: Logger instance for structured logging.

    Example:
        ```python
        retry = RetryWithBackoff(max_attempts=5, classifier=KubernetesErrorClassifier())
        result = retry.call(api.read_namespaced_deployment, "my-app", "flink")
        ```

    Note:
        Programming errors (TypeError, AttributeError, KeyError) are never
        retried.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        wait_min: float = 1.0,
        wait_max: float = 10.0,
        multiplier: float = 1.0,
        retry_exceptions: tuple[type[Exception], ...] | None = None,
        classifier: ErrorClassifier | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.wait_min = wait_min
        self.wait_max = wait_max
        self.multiplier = multiplier
        self.retry_exceptions = retry_exceptions or DEFAULT_RETRY_EXCEPTIONS
        self.classifier = classifier
        self.logger = logger or logging.getLogger("operator.retry")

    @staticmethod
    def _log_failure(
        retry_state: Any,
        logger: logging.Logger,
        max_attempts: int,
    ) -> None:
        """Log callback for final failure after all retries exhausted."""
        if retry_state.outcome is None or not retry_state.outcome.failed:
            return
        if retry_state.attempt_number < max_attempts:
            return

        exception = retry_state.outcome.exception()
        logger.error(
            "All retry attempts exhausted",
            extra={
                "max_attempts": max_attempts,
                "error": str(exception),
                "error_type": type(exception).__name__,
            },
        )

    def _retry_condition(self, retry_exceptions: tuple[type[Exception], ...]) -> Any:
        if self.classifier is not None:
            return retry_if_exception(self.classifier.is_retriable)
        return retry_if_exception_type(retry_exceptions)

    def call(
        self,
        func: Callable[..., T],
        *args: Any,
        retry_exceptions: tuple[type[Exception], ...] | None = None,
        **kwargs: Any,
    ) -> T:
        """Call a function with retry logic.

        Args:
            func: Function to call with retry logic.
            *args: Positional arguments to pass to func.
            retry_exceptions: Override default retry exceptions for this call.
            **kwargs: Keyword arguments to pass to func.

        Returns:
            Result of func(*args, **kwargs).

        Raises:
            Exception: The last exception once attempts are exhausted, or the
                first non-retriable one.
        """
        exceptions_to_retry = retry_exceptions or self.retry_exceptions
        get_details = self.classifier.get_error_details if self.classifier is not None else None

        retry = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.multiplier, min=self.wait_min, max=self.wait_max),
            retry=self._retry_condition(exceptions_to_retry),
            before_sleep=create_retry_logger(self.logger, get_details, "Retry attempt failed, retrying"),
            after=partial(self._log_failure, logger=self.logger, max_attempts=self.max_attempts),
            reraise=True,
        )

        try:
            result: T = retry(func, *args, **kwargs)
            return result
        except (TypeError, AttributeError, KeyError) as e:
            self.logger.exception(
                "Unexpected error, not retrying",
                extra={"error": str(e), "error_type": type(e).__name__},
            )
            raise


# =============================================================================
# Bounded polling
# =============================================================================


def poll_until(
    condition: Callable[[], bool],
    *,
    interval_s: float,
    timeout_s: float,
    description: str,
    logger: logging.Logger | None = None,
) -> None:
    """Call `condition` every `interval_s` seconds until it returns True.

    The first check happens after one interval, matching a wait loop that
    sleeps before looking.

    Args:
        condition: Zero-argument callable; polling stops when it returns True.
            Exceptions raised by it propagate immediately.
        interval_s: Seconds between checks.
        timeout_s: Overall budget in seconds.
        description: Human readable name of what is awaited, used in logs and
            in the timeout error message.
        logger: Logger for progress lines (default: operator.retry).

    Raises:
        PollTimeoutError: If the condition did not hold within `timeout_s`.
    """
    log = logger or logging.getLogger("operator.retry")

    def log_wait(retry_state: Any) -> None:
        log.info(
            "Still waiting",
            extra={
                "waiting_for": description,
                "attempt": retry_state.attempt_number,
                "waited_seconds": round(retry_state.seconds_since_start or 0.0, 1),
            },
        )

    def check() -> bool:
        return condition()

    retrying = Retrying(
        stop=stop_after_delay(timeout_s),
        wait=wait_fixed(interval_s),
        retry=retry_if_result(lambda done: not done),
        before_sleep=log_wait,
    )

    try:
        # First check only after one interval has passed
        retrying.sleep(interval_s)
        retrying(check)
    except RetryError as e:
        msg = f"Timed out after {timeout_s}s waiting for {description}"
        raise PollTimeoutError(msg) from e


def poll_for_value(
    fetch: Callable[[], T | None],
    *,
    interval_s: float,
    timeout_s: float,
    description: str,
    logger: logging.Logger | None = None,
) -> T:
    """Call `fetch` until it returns something other than None.

    Args:
        fetch: Zero-argument callable returning None while the result is not
            ready yet.
        interval_s: Seconds between calls.
        timeout_s: Overall budget in seconds.
        description: Name of what is awaited.
        logger: Logger for progress lines.

    Returns:
        The first non-None value returned by `fetch`.

    Raises:
        PollTimeoutError: If no value arrived within `timeout_s`.
    """
    result: list[T] = []

    def ready() -> bool:
        value = fetch()
        if value is None:
            return False
        result.append(value)
        return True

    if ready():
        return result[0]
    poll_until(ready, interval_s=interval_s, timeout_s=timeout_s, description=description, logger=logger)
    return result[0]
