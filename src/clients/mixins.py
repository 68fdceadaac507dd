"""Mixins shared by the operator's client classes."""

import logging
from abc import ABC, abstractmethod
from typing import Any

import attrs
import pybreaker

from foundation.circuit_breaker import create_circuit_breaker


@attrs.define(frozen=True, slots=True)
class BreakerSettings:
    """Circuit breaker parameters of one client instance.

    Attributes:
        name: Breaker name, e.g. `flink-rest:flink/my-app`.
        failure_threshold: Consecutive failures before the circuit opens.
        recovery_timeout: Seconds before a trial call is let through.
    """

    name: str
    failure_threshold: int = 5
    recovery_timeout: int = 60


@attrs.define(frozen=False, slots=True)
class CircuitBreakerMixin(ABC):
    """Gives an attrs client its own pybreaker circuit breaker.

    Subclasses implement `_circuit_breaker_config()` and call
    `_init_circuit_breaker()` from `__attrs_post_init__`; methods decorated
    with `foundation.circuit_breaker.with_circuit_breaker` then run through
    `_breaker`.
    """

    _breaker: pybreaker.CircuitBreaker = attrs.field(init=False)

    @abstractmethod
    def _circuit_breaker_config(self) -> BreakerSettings:
        """Return the breaker parameters for this instance."""

    def _init_circuit_breaker(self) -> None:
        settings = self._circuit_breaker_config()
        object.__setattr__(
            self,
            "_breaker",
            create_circuit_breaker(
                name=settings.name,
                failure_threshold=settings.failure_threshold,
                recovery_timeout=settings.recovery_timeout,
            ),
        )

    @property
    def circuit_state(self) -> str:
        """Current breaker state: `closed`, `open` or `half-open`."""
        return self._breaker.current_state


class LoggerMixin:
    """Adds a class-level `_logger` named `operator.<module>`.

    Client output is thereby routed through the `operator` logger
    configuration in `foundation.logger`.
    """

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        module = cls.__module__.rsplit(".", 1)[-1]
        cls._logger = logging.getLogger(f"operator.{module}")  # type: ignore[attr-defined]
