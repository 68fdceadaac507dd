"""Unit tests for foundation.circuit_breaker module.

This file tests the pybreaker-based circuit breaker utilities that protect the
operator from dead Flink JobManagers.

# Test Coverage

The tests cover:
  - CircuitBreakerListener: open/close logging, counted failures
  - create_circuit_breaker: configuration, listener, 4xx exclusion
  - with_circuit_breaker: pass-through, fail fast when open, trip translation
  - circuit_open_error / _get_breaker_or_raise

# Running Tests

Run with: pytest tests/unit/foundation/test_circuit_breaker.py
"""

import logging
from unittest.mock import MagicMock, patch

import pybreaker
import pytest

from foundation.circuit_breaker import (
    CircuitBreakerListener,
    _get_breaker_or_raise,
    circuit_open_error,
    create_circuit_breaker,
    is_client_error,
    with_circuit_breaker,
)
from foundation.exceptions import UpstreamError


class Guarded:
    """Minimal object carrying a breaker, as CircuitBreakerMixin provides."""

    def __init__(self, fail_max: int = 2) -> None:
        self._breaker = create_circuit_breaker("flink-rest:flink/app", failure_threshold=fail_max, recovery_timeout=60)
        self.calls = 0

    @with_circuit_breaker
    def work(self, error: Exception | None = None) -> str:
        self.calls += 1
        if error is not None:
            raise error
        return "done"


# =============================================================================
# CircuitBreakerListener Tests
# =============================================================================


class TestCircuitBreakerListener:
    """Test suite for CircuitBreakerListener."""

    @pytest.fixture
    def mock_cb(self) -> MagicMock:
        cb = MagicMock(spec=pybreaker.CircuitBreaker)
        cb.name = "flink-rest:flink/app"
        cb.fail_counter = 5
        return cb

    def test_opening_logs_warning(self, mock_cb: MagicMock) -> None:
        mock_logger = MagicMock(spec=logging.Logger)
        with patch("foundation.circuit_breaker.logger", mock_logger):
            CircuitBreakerListener().state_change(mock_cb, "closed", "open")  # type: ignore[arg-type]

        extra = mock_logger.warning.call_args[1]["extra"]
        assert extra == {
            "circuit_breaker": "flink-rest:flink/app",
            "old_state": "closed",
            "new_state": "open",
            "failure_count": 5,
        }

    def test_closing_logs_info(self, mock_cb: MagicMock) -> None:
        mock_logger = MagicMock(spec=logging.Logger)
        with patch("foundation.circuit_breaker.logger", mock_logger):
            CircuitBreakerListener().state_change(mock_cb, "half-open", "closed")  # type: ignore[arg-type]

        mock_logger.warning.assert_not_called()
        assert mock_logger.info.call_args[1]["extra"]["new_state"] == "closed"

    def test_state_objects_are_named(self, mock_cb: MagicMock) -> None:
        mock_logger = MagicMock(spec=logging.Logger)
        state = MagicMock()
        state.name = pybreaker.STATE_OPEN
        with patch("foundation.circuit_breaker.logger", mock_logger):
            CircuitBreakerListener().state_change(mock_cb, None, state)

        assert mock_logger.warning.call_args[1]["extra"]["old_state"] == "None"

    def test_failure_logs_exception_type(self, mock_cb: MagicMock) -> None:
        mock_logger = MagicMock(spec=logging.Logger)
        with patch("foundation.circuit_breaker.logger", mock_logger):
            CircuitBreakerListener().failure(mock_cb, ConnectionError("refused"))

        extra = mock_logger.debug.call_args[1]["extra"]
        assert extra["exception_type"] == "ConnectionError"
        assert extra["exception_message"] == "refused"


# =============================================================================
# create_circuit_breaker Tests
# =============================================================================


class TestCreateCircuitBreaker:
    """Test suite for create_circuit_breaker."""

    def test_configuration(self) -> None:
        breaker = create_circuit_breaker("svc", failure_threshold=7, recovery_timeout=30)
        assert breaker.name == "svc"
        assert breaker.fail_max == 7
        assert breaker.reset_timeout == 30
        assert any(isinstance(listener, CircuitBreakerListener) for listener in breaker.listeners)

    def test_defaults(self) -> None:
        breaker = create_circuit_breaker("svc")
        assert breaker.fail_max == 5
        assert breaker.reset_timeout == 60

    @pytest.mark.parametrize(
        ("exc", "expected"),
        [
            (UpstreamError("unknown job", status_code=404), True),
            (UpstreamError("conflict", status_code=409), True),
            (UpstreamError("internal", status_code=500), False),
            (UpstreamError("refused"), False),
            (ConnectionError("refused"), False),
        ],
    )
    def test_is_client_error(self, exc: Exception, expected: bool) -> None:
        assert is_client_error(exc) is expected

    def test_client_errors_do_not_open_circuit(self) -> None:
        """Test that 4xx answers never open the circuit.

        **Why this test is important:**
          - A JobManager answering 404 for a finished job is healthy
          - Opening its circuit would blind the status poller for that cluster

        **What it tests:**
          - Repeated 4xx errors propagate unchanged and keep the circuit closed
        """
        guarded = Guarded(fail_max=2)
        for _ in range(4):
            with pytest.raises(UpstreamError, match="unknown job"):
                guarded.work(UpstreamError("unknown job", status_code=404))

        assert guarded._breaker.current_state == pybreaker.STATE_CLOSED
        assert guarded.work() == "done"


# =============================================================================
# with_circuit_breaker Tests
# =============================================================================


class TestWithCircuitBreaker:
    """Test suite for the with_circuit_breaker decorator."""

    def test_passes_through_result(self) -> None:
        guarded = Guarded()
        assert guarded.work() == "done"

    def test_open_circuit_fails_fast(self) -> None:
        """Test that an open circuit rejects calls without invoking the function.

        **Why this test is important:**
          - A dead JobManager would otherwise cost a full timeout per call
          - The status poller visits every application each cycle

        **What it tests:**
          - After fail_max failures the next call raises UpstreamError
          - The wrapped function is not invoked while the circuit is open
        """
        guarded = Guarded(fail_max=2)
        with pytest.raises(ConnectionError):
            guarded.work(ConnectionError("backend down"))
        # The failure that trips the breaker surfaces as UpstreamError
        with pytest.raises(UpstreamError, match="unavailable"):
            guarded.work(ConnectionError("backend down"))

        calls_before = guarded.calls
        with pytest.raises(UpstreamError, match="flink-rest:flink/app is unavailable"):
            guarded.work()
        assert guarded.calls == calls_before

    def test_missing_breaker_raises_runtime_error(self) -> None:
        class NoBreaker:
            @with_circuit_breaker
            def work(self) -> None:
                return None

        with pytest.raises(RuntimeError, match="no circuit breaker"):
            NoBreaker().work()


class TestHelpers:
    """Test suite for helper functions."""

    def test_circuit_open_error_names_breaker(self) -> None:
        breaker = create_circuit_breaker("flink-rest:flink/app", recovery_timeout=30)

        error = circuit_open_error(breaker)

        assert isinstance(error, UpstreamError)
        assert error.status_code is None
        assert "flink-rest:flink/app is unavailable" in str(error)
        assert "30s" in str(error)

    def test_get_breaker_returns_instance_breaker(self) -> None:
        guarded = Guarded()
        assert _get_breaker_or_raise(guarded) is guarded._breaker
