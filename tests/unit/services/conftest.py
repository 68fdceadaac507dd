"""Shared fixtures for service tests.

This module provides common fixtures used across all service test modules,
including mock clients, shared state, and service instances.
"""

# pylint: disable=redefined-outer-name
# Pytest fixtures intentionally redefine fixture names - this is expected behavior

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from clients.flink_rest import FlinkRestClient, FlinkRestClientPool
from clients.k8s_deployer import FlinkDeployer
from clients.k8s_resources import DeploymentClient, FlinkApplicationClient
from config import FlinkConfig, OperatorConfig
from core.ingress import IngressPublisher
from core.models import FlinkApplication, JobOverview
from core.services.reconciler import Reconciler
from core.services.status_poller import StatusPoller
from core.state import ApplicationRegistry, SavepointLedger

# =============================================================================
# Shared State
# =============================================================================


@pytest.fixture
def registry() -> ApplicationRegistry:
    return ApplicationRegistry()


@pytest.fixture
def ledger() -> SavepointLedger:
    return SavepointLedger()


@pytest.fixture
def cache() -> dict[str, FlinkApplication]:
    """Stand-in for the informer cache, keyed by application key."""
    return {}


# =============================================================================
# Mock Clients
# =============================================================================


@pytest.fixture
def mock_rest_client() -> MagicMock:
    """Create a mock FlinkRestClient for testing.

    Returns:
        MagicMock: A REST client reporting two running jobs whose savepoints
            complete at `s3://sp/<job id>`.
    """
    client = MagicMock(spec=FlinkRestClient)
    client.list_jobs.return_value = [
        JobOverview(job_id="J1", name="ingest", state="RUNNING"),
        JobOverview(job_id="J2", name="enrich", state="RUNNING"),
    ]
    client.trigger_savepoint.side_effect = lambda job_id, target=None: f"s3://sp/{job_id}"
    client.cancel_with_savepoint.side_effect = lambda job_id, target=None: f"s3://sp/cancel-{job_id}"
    client.stop_with_savepoint.side_effect = lambda job_id, target=None, drain=False: f"s3://sp/stop-{job_id}"
    return client


@pytest.fixture
def mock_rest_clients(mock_rest_client: MagicMock) -> MagicMock:
    pool = MagicMock(spec=FlinkRestClientPool)
    pool.get.return_value = mock_rest_client
    return pool


@pytest.fixture
def mock_deployer() -> MagicMock:
    return MagicMock(spec=FlinkDeployer)


@pytest.fixture
def mock_deployments() -> MagicMock:
    deployments = MagicMock(spec=DeploymentClient)
    deployments.exists.return_value = False
    return deployments


@pytest.fixture
def mock_applications() -> MagicMock:
    return MagicMock(spec=FlinkApplicationClient)


@pytest.fixture
def mock_ingress() -> MagicMock:
    return MagicMock(spec=IngressPublisher)


# =============================================================================
# Service Instances
# =============================================================================


@pytest.fixture
def reconciler(
    cache: dict[str, FlinkApplication],
    registry: ApplicationRegistry,
    ledger: SavepointLedger,
    mock_deployer: MagicMock,
    mock_deployments: MagicMock,
    mock_applications: MagicMock,
    mock_rest_clients: MagicMock,
    mock_ingress: MagicMock,
    operator_config: OperatorConfig,
    flink_config: FlinkConfig,
) -> Reconciler:
    """Create a Reconciler wired to mocks and in-memory state."""
    return Reconciler(
        lookup=cache.get,
        registry=registry,
        ledger=ledger,
        deployer=mock_deployer,
        deployments=mock_deployments,
        applications=mock_applications,
        rest_clients=mock_rest_clients,
        ingress=mock_ingress,
        operator_config=operator_config,
        flink_config=flink_config,
    )


@pytest.fixture
def poller(
    registry: ApplicationRegistry,
    ledger: SavepointLedger,
    mock_applications: MagicMock,
    mock_rest_clients: MagicMock,
) -> StatusPoller:
    return StatusPoller(registry, ledger, mock_applications, mock_rest_clients, interval_s=0.01)
