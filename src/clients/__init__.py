"""External service clients (Kubernetes API, Flink REST).

This module provides factory functions for creating configured client
instances from centralized configuration.
"""

from config import FlinkConfig, get_settings

from .flink_rest import FlinkRestClient, FlinkRestClientPool
from .k8s_deployer import FlinkDeployer
from .k8s_resources import DeploymentClient, FlinkApplicationClient, IngressClient
from .k8s_watch import ResourceInformer


def create_flink_rest_client(base_url: str, name: str = "flink", config: FlinkConfig | None = None) -> "FlinkRestClient":
    """Create a configured Flink REST client.

    Args:
        base_url: JobManager REST base URL.
        name: Label for logs and the circuit breaker.
        config: Optional FlinkConfig. If None, uses settings from
            get_settings().

    Returns:
        Configured FlinkRestClient instance.

    Example:
        ```python
        from clients import create_flink_rest_client

        client = create_flink_rest_client("http://my-app-rest.flink:8081")
        jobs = client.list_jobs()
        ```
    """
    if config is None:
        config = get_settings().flink

    return FlinkRestClient.from_config(base_url, config, name=name)


__all__ = [
    "DeploymentClient",
    "FlinkApplicationClient",
    "FlinkDeployer",
    "FlinkRestClient",
    "FlinkRestClientPool",
    "IngressClient",
    "ResourceInformer",
    "create_flink_rest_client",
]
