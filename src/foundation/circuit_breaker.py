"""Circuit breakers for Flink JobManager REST clients, built on **pybreaker**.

The operator talks to one JobManager per managed application, and every
`FlinkRestClient` carries its own breaker named after the application. A
dead JobManager therefore opens only its own circuit: the status poller keeps
visiting the other applications at full speed and gets an immediate
`UpstreamError` for the broken one instead of waiting for a request timeout.

## What counts as a failure

Transport errors and 5xx answers mean the JobManager is unhealthy and count
towards opening the circuit. A 4xx answer (unknown job id, savepoint already
in progress) is a healthy JobManager refusing one request; it is excluded so
it never opens the circuit.

## States

```
CLOSED --fail_max failures--> OPEN --reset_timeout--> HALF_OPEN --success--> CLOSED
                                ^                          |
                                +---------failure----------+
```
"""

import functools
import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

import pybreaker

from foundation.exceptions import UpstreamError

logger = logging.getLogger("foundation.circuit_breaker")

F = TypeVar("F", bound=Callable[..., Any])


def is_client_error(exc: BaseException) -> bool:
    """Exclusion predicate: True for an `UpstreamError` carrying a 4xx status."""
    return isinstance(exc, UpstreamError) and exc.is_client_error


def _state_name(state: pybreaker.CircuitBreakerState | str | None) -> str:
    return str(getattr(state, "name", state))


class CircuitBreakerListener(pybreaker.CircuitBreakerListener):
    """Logs state changes and counted failures of a breaker."""

    def state_change(
        self,
        cb: pybreaker.CircuitBreaker,
        old_state: pybreaker.CircuitBreakerState | None,
        new_state: pybreaker.CircuitBreakerState,
    ) -> None:
        extra = {
            "circuit_breaker": cb.name,
            "old_state": _state_name(old_state),
            "new_state": _state_name(new_state),
            "failure_count": cb.fail_counter,
        }
        if extra["new_state"] == pybreaker.STATE_OPEN:
            logger.warning("Circuit opened, rejecting calls", extra=extra)
        else:
            logger.info("Circuit state changed", extra=extra)

    def failure(self, cb: pybreaker.CircuitBreaker, exc: BaseException) -> None:
        logger.debug(
            "Call counted as failure",
            extra={
                "circuit_breaker": cb.name,
                "failure_count": cb.fail_counter,
                "exception_type": type(exc).__name__,
                "exception_message": str(exc),
            },
        )


def create_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    recovery_timeout: int = 60,
    exclude: Iterable[type[BaseException] | Callable[[BaseException], bool]] = (is_client_error,),
) -> pybreaker.CircuitBreaker:
    """Create a breaker with the logging listener attached.

    Args:
        name: Breaker name, e.g. `flink-rest:flink/my-app`.
        failure_threshold: Consecutive failures before the circuit opens.
        recovery_timeout: Seconds before an open circuit lets a trial call
            through.
        exclude: Exception types or predicates that never count as failures
            (default: 4xx answers, see `is_client_error`).

    Returns:
        Configured `pybreaker.CircuitBreaker`.
    """
    return pybreaker.CircuitBreaker(
        name=name,
        fail_max=failure_threshold,
        reset_timeout=recovery_timeout,
        exclude=list(exclude),
        listeners=[CircuitBreakerListener()],
    )


def circuit_open_error(breaker: pybreaker.CircuitBreaker) -> UpstreamError:
    """Build the error raised for a call rejected by an open circuit."""
    return UpstreamError(
        f"{breaker.name} is unavailable: circuit open after {breaker.fail_counter} consecutive failures, "
        f"next trial call in at most {breaker.reset_timeout}s"
    )


def _get_breaker_or_raise(instance: object) -> pybreaker.CircuitBreaker:
    breaker = getattr(instance, "_breaker", None)
    if breaker is None:
        msg = (
            f"{instance.__class__.__name__} has no circuit breaker. "
            "Inherit from CircuitBreakerMixin and call _init_circuit_breaker() in __attrs_post_init__."
        )
        raise RuntimeError(msg)
    return breaker


def with_circuit_breaker(func: F) -> F:
    """Run a client method through the instance's `_breaker`.

    An open circuit fails fast with `UpstreamError`; the wrapped method is not
    called. The call that trips the circuit also surfaces as `UpstreamError`.

    Example:
        ```python
        @attrs.define(frozen=False, slots=True)
        class JobManagerClient(CircuitBreakerMixin):
            @with_circuit_breaker
            def _request(self, method: str, path: str) -> dict:
                ...
        ```
    """

    @functools.wraps(func)
    def wrapper(self, *args, **kwargs):
        breaker = _get_breaker_or_raise(self)
        if breaker.current_state == pybreaker.STATE_OPEN:
            raise circuit_open_error(breaker)
        try:
            return breaker.call(func, self, *args, **kwargs)
        except pybreaker.CircuitBreakerError as e:
            raise circuit_open_error(breaker) from e

    return wrapper  # type: ignore[return-value]
