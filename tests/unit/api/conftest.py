"""Shared fixtures for API tests.

This module provides a fake controller backed by real in-memory state and a
FastAPI test client serving it, so route tests need no cluster.
"""

# pylint: disable=redefined-outer-name
# Pytest fixtures intentionally redefine fixture names - this is expected behavior

from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from api.app import create_app
from clients.k8s_watch import ResourceInformer
from core.services.controller import FlinkApplicationController
from core.state import ApplicationRegistry, SavepointLedger

# =============================================================================
# Fake Controller
# =============================================================================


@pytest.fixture
def registry() -> ApplicationRegistry:
    return ApplicationRegistry()


@pytest.fixture
def ledger() -> SavepointLedger:
    return SavepointLedger()


@pytest.fixture
def fake_controller(registry: ApplicationRegistry, ledger: SavepointLedger) -> MagicMock:
    """Create a controller double exposing real registry and ledger.

    Returns:
        MagicMock: A ready controller whose start/stop are recorded.
    """
    controller = MagicMock(spec=FlinkApplicationController)
    controller.registry = registry
    controller.ledger = ledger
    controller.informer = MagicMock(spec=ResourceInformer)
    controller.informer.has_synced.return_value = True
    controller.is_ready.return_value = True
    return controller


# =============================================================================
# FastAPI Test Client
# =============================================================================


@pytest.fixture
def test_client(fake_controller: MagicMock) -> Iterator[TestClient]:
    """Create a FastAPI test client with the lifespan running.

    Returns:
        TestClient: A client whose app started the fake controller.
    """
    app = create_app(controller=fake_controller)
    with TestClient(app) as client:
        yield client
