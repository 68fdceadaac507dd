"""Shared pytest configuration and fixtures.

This module provides global fixtures and configuration that are available
to all tests in the test suite.

Fixtures defined here are automatically available to all tests without explicit
import statements. Keep fixtures small, composable, and focused on setup/teardown.
Do NOT put business logic in fixtures.
"""

# pylint: disable=redefined-outer-name
# Pytest fixtures intentionally redefine fixture names - this is expected behavior

from collections.abc import Callable
from typing import Any

import pytest

from config import FlinkConfig, OperatorConfig
from core.effective_config import resolve_effective_config
from core.models import FlinkApplication
from core.state import RegistryEntry

AppFactory = Callable[..., FlinkApplication]


def app_dict(
    name: str = "app1",
    namespace: str = "flink",
    *,
    image: str = "flink:1.17",
    generation: int | None = None,
    **spec: Any,
) -> dict[str, Any]:
    """Build a FlinkApplication resource dictionary with a minimal valid spec."""
    body: dict[str, Any] = {"imageName": image, "jarURI": "local:///opt/flink/job.jar"}
    if generation is not None:
        body["savepointGeneration"] = generation
    body.update(spec)
    return {
        "apiVersion": "flink.k8s.io/v1alpha1",
        "kind": "FlinkApplication",
        "metadata": {"name": name, "namespace": namespace, "uid": f"uid-{name}", "resourceVersion": "1"},
        "spec": body,
    }


@pytest.fixture
def flink_config() -> FlinkConfig:
    """Create a FlinkConfig for testing.

    Returns:
        FlinkConfig: Test Flink defaults with fast savepoint polling.
    """
    return FlinkConfig(
        rest_url_template="http://{name}-rest.{namespace}:{port}",
        ingress_domain="flink.test",
        savepoint_poll_interval_s=0.01,
        savepoint_timeout_s=1.0,
    )


@pytest.fixture
def operator_config() -> OperatorConfig:
    """Create an OperatorConfig for testing.

    Returns:
        OperatorConfig: Test configuration with tiny teardown intervals.
    """
    return OperatorConfig(
        namespace="flink-operator",
        operator_name="flink-operator",
        queue_capacity=8,
        status_poll_interval_s=0.05,
        teardown_poll_interval_s=0.01,
        teardown_timeout_s=0.1,
    )


@pytest.fixture
def make_app() -> AppFactory:
    """Factory fixture building FlinkApplication objects.

    Returns:
        Callable taking the same arguments as `app_dict`.
    """

    def factory(*args: Any, **kwargs: Any) -> FlinkApplication:
        return FlinkApplication.from_dict(app_dict(*args, **kwargs))

    return factory


@pytest.fixture
def make_entry(flink_config: FlinkConfig) -> Callable[[FlinkApplication], RegistryEntry]:
    """Factory fixture building RegistryEntry objects for an application."""

    def factory(app: FlinkApplication) -> RegistryEntry:
        return RegistryEntry(app=app, config=resolve_effective_config(app, flink_config))

    return factory


@pytest.fixture
def make_app_dict() -> Callable[..., dict[str, Any]]:
    """Factory fixture building FlinkApplication resource dictionaries."""
    return app_dict
