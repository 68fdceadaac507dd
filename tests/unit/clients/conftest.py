"""Shared fixtures for client tests.

This module provides common fixtures used across all client test modules.
"""

# pylint: disable=redefined-outer-name
# Pytest fixtures intentionally redefine fixture names - this is expected behavior

from unittest.mock import MagicMock

import pybreaker
import pytest

# =============================================================================
# Common Fixtures
# =============================================================================


@pytest.fixture
def mock_circuit_breaker() -> MagicMock:
    """Create a mock circuit breaker for testing.

    Returns:
        MagicMock: A mock circuit breaker that passes through function calls.
    """
    breaker = MagicMock(spec=pybreaker.CircuitBreaker)
    breaker.call = MagicMock(side_effect=lambda func, *args, **kwargs: func(*args, **kwargs))
    breaker.current_state = pybreaker.STATE_CLOSED
    return breaker
