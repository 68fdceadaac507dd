"""Configuration management for the FlinkApplication operator.

This module provides the configuration system for the operator using
Pydantic models. All settings are loaded from environment variables with
sensible defaults.

## Configuration Sources

Configuration is read from environment variables at process startup. The
`get_settings()` function uses `@lru_cache` to ensure settings are loaded
once per process (containers have static env vars, so this is safe).

## Environment Variables

**Operator**
- `K8S_NAMESPACE`: Namespace the operator watches and publishes its Ingress
  into. Falls back to the pod's service-account namespace, then `default`.
- `OPERATOR_NAME`: Name of the operator Deployment and of the Ingress it
  publishes (default: `flink-native-k8s-operator`)
- `WORK_QUEUE_CAPACITY`: Maximum pending work items (default: `1024`)
- `STATUS_POLL_INTERVAL`: Seconds between status poll cycles (default: `60`)
- `TEARDOWN_POLL_INTERVAL`: Seconds between checks while waiting for an old
  JobManager Deployment to disappear (default: `3`)
- `TEARDOWN_TIMEOUT`: Seconds before the teardown wait gives up
  (default: `300`)
- `INFORMER_RESYNC_PERIOD`: Seconds between full resyncs of the watch cache
  (default: `600`)
- `WATCH_TIMEOUT`: Server-side timeout of one watch request (default: `300`)
- `OPERATOR_HTTP_PORT`: Port of the health/metrics HTTP server
  (default: `8080`)

**Flink**
- `FLINK_REST_PORT`: Default JobManager REST port (default: `8081`)
- `FLINK_REST_URL_TEMPLATE`: Template for the JobManager REST URL, with
  `{name}`, `{namespace}` and `{port}` placeholders
  (default: `http://{name}-rest.{namespace}:{port}`)
- `FLINK_SERVICE_ACCOUNT`: Service account of the JobManager pods
  (default: `flink`)
- `INGRESS_DOMAIN`: Domain suffix of the per-application Ingress host
  (default: `flink.k8s.io`)
- `FLINK_REST_TIMEOUT`: REST request timeout in seconds (default: `30`)
- `FLINK_REST_MAX_RETRIES`: Retries for idempotent REST calls (default: `3`)
- `FLINK_REST_CIRCUIT_BREAKER_THRESHOLD`: Failures before circuit opens
  (default: `5`)
- `FLINK_REST_CIRCUIT_BREAKER_TIMEOUT`: Circuit recovery timeout in seconds
  (default: `30`)
- `SAVEPOINT_POLL_INTERVAL`: Seconds between savepoint status checks
  (default: `2`)
- `SAVEPOINT_TIMEOUT`: Seconds before a savepoint operation is considered
  failed (default: `600`)

## Usage

```python
from config import get_settings

settings = get_settings()
print(settings.operator.namespace, settings.flink.default_rest_port)
```
"""

import os
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import SettingsConfigDict

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"


def _is_in_cluster() -> bool:
    """Detect if running inside a Kubernetes cluster.

    Checks for:
    1. Explicit OPERATOR_ENV override (`cluster` or `local`)
    2. Kubernetes service account token
    3. KUBERNETES_SERVICE_HOST environment variable

    Returns:
        True if running in-cluster, False otherwise.
    """
    env_override = os.getenv("OPERATOR_ENV")
    if env_override:
        return env_override.lower() == "cluster"

    if os.path.exists("/var/run/secrets/kubernetes.io/serviceaccount/token"):
        return True

    return bool(os.getenv("KUBERNETES_SERVICE_HOST"))


def _detect_namespace() -> str:
    """Resolve the operator namespace.

    Returns:
        `K8S_NAMESPACE` if set, else the service-account namespace when running
        in-cluster, else "default".
    """
    namespace = os.getenv("K8S_NAMESPACE")
    if namespace:
        return namespace

    if _is_in_cluster() and os.path.exists(SERVICE_ACCOUNT_NAMESPACE_FILE):
        with open(SERVICE_ACCOUNT_NAMESPACE_FILE, encoding="utf-8") as f:
            detected = f.read().strip()
        if detected:
            return detected

    return "default"


class OperatorConfig(BaseModel):
    """Configuration for the controller loops.

    Attributes:
        namespace: Namespace watched by the operator; the Ingress is published
            here as well.
        operator_name: Name of the operator Deployment (owner of the Ingress)
            and of the Ingress itself.
        queue_capacity: Bounded capacity of the work queue.
        status_poll_interval_s: Seconds between status poll cycles.
        teardown_poll_interval_s: Seconds between teardown checks during an
            image update.
        teardown_timeout_s: Upper bound of the teardown wait.
        resync_period_s: Seconds between informer resyncs.
        watch_timeout_s: Server-side timeout of a single watch request.
        http_port: Port of the health/metrics HTTP server.
    """

    namespace: str = "default"
    operator_name: str = "flink-native-k8s-operator"
    queue_capacity: int = Field(default=1024, gt=0)
    status_poll_interval_s: float = Field(default=60.0, gt=0)
    teardown_poll_interval_s: float = Field(default=3.0, gt=0)
    teardown_timeout_s: float = Field(default=300.0, gt=0)
    resync_period_s: float = Field(default=600.0, gt=0)
    watch_timeout_s: int = Field(default=300, gt=0)
    http_port: int = 8080

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls, namespace: str | None = None) -> "OperatorConfig":
        """Create OperatorConfig from environment variables.

        Args:
            namespace: Explicit namespace. If None, it is detected.

        Returns:
            Configured OperatorConfig instance.
        """
        return cls(
            namespace=namespace or _detect_namespace(),
            operator_name=os.getenv("OPERATOR_NAME", "flink-native-k8s-operator"),
            queue_capacity=int(os.getenv("WORK_QUEUE_CAPACITY", "1024")),
            status_poll_interval_s=float(os.getenv("STATUS_POLL_INTERVAL", "60")),
            teardown_poll_interval_s=float(os.getenv("TEARDOWN_POLL_INTERVAL", "3")),
            teardown_timeout_s=float(os.getenv("TEARDOWN_TIMEOUT", "300")),
            resync_period_s=float(os.getenv("INFORMER_RESYNC_PERIOD", "600")),
            watch_timeout_s=int(os.getenv("WATCH_TIMEOUT", "300")),
            http_port=int(os.getenv("OPERATOR_HTTP_PORT", "8080")),
        )


class FlinkConfig(BaseModel):
    """Environment-level defaults for Flink clusters and the REST client.

    Attributes:
        default_rest_port: JobManager REST port unless `rest.port` is set in
            the application's flinkConfig.
        rest_url_template: Format string for the JobManager REST base URL.
        service_account: Service account for JobManager pods.
        ingress_domain: Domain suffix used for Ingress hosts.
        default_conf: Flink configuration entries applied to every cluster
            before the application's own flinkConfig.
        rest_timeout_s: Per-request timeout.
        rest_max_retries: Retries for idempotent REST requests.
        rest_circuit_breaker_threshold: Failures before the circuit opens.
        rest_circuit_breaker_timeout: Seconds before a half-open probe.
        savepoint_poll_interval_s: Seconds between savepoint status checks.
        savepoint_timeout_s: Seconds before a savepoint is given up on.
    """

    default_rest_port: int = 8081
    rest_url_template: str = "http://{name}-rest.{namespace}:{port}"
    service_account: str = "flink"
    ingress_domain: str = "flink.k8s.io"
    default_conf: dict[str, str] = Field(default_factory=dict)
    rest_timeout_s: int = 30
    rest_max_retries: int = 3
    rest_circuit_breaker_threshold: int = 5
    rest_circuit_breaker_timeout: int = 30
    savepoint_poll_interval_s: float = Field(default=2.0, gt=0)
    savepoint_timeout_s: float = Field(default=600.0, gt=0)

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls) -> "FlinkConfig":
        """Create FlinkConfig from environment variables.

        When running outside the cluster and no template is given, the REST
        URL points at localhost so that `kubectl port-forward` works.

        Returns:
            Configured FlinkConfig instance.
        """
        default_template = (
            "http://{name}-rest.{namespace}:{port}" if _is_in_cluster() else "http://localhost:{port}"
        )
        return cls(
            default_rest_port=int(os.getenv("FLINK_REST_PORT", "8081")),
            rest_url_template=os.getenv("FLINK_REST_URL_TEMPLATE", default_template),
            service_account=os.getenv("FLINK_SERVICE_ACCOUNT", "flink"),
            ingress_domain=os.getenv("INGRESS_DOMAIN", "flink.k8s.io"),
            rest_timeout_s=int(os.getenv("FLINK_REST_TIMEOUT", "30")),
            rest_max_retries=int(os.getenv("FLINK_REST_MAX_RETRIES", "3")),
            rest_circuit_breaker_threshold=int(os.getenv("FLINK_REST_CIRCUIT_BREAKER_THRESHOLD", "5")),
            rest_circuit_breaker_timeout=int(os.getenv("FLINK_REST_CIRCUIT_BREAKER_TIMEOUT", "30")),
            savepoint_poll_interval_s=float(os.getenv("SAVEPOINT_POLL_INTERVAL", "2")),
            savepoint_timeout_s=float(os.getenv("SAVEPOINT_TIMEOUT", "600")),
        )


class Settings(BaseModel):
    """Immutable runtime configuration for the operator.

    Attributes:
        operator: Controller loop configuration.
        flink: Flink cluster defaults and REST client configuration.
        k8s_namespace: Namespace the operator runs in and watches.
    """

    operator: OperatorConfig
    flink: FlinkConfig
    k8s_namespace: str

    model_config = SettingsConfigDict(frozen=True)

    @classmethod
    def from_env(cls, namespace: str | None = None) -> "Settings":
        """Create Settings from environment variables.

        Args:
            namespace: Kubernetes namespace. If None, it is detected.

        Returns:
            Configured Settings instance.
        """
        operator = OperatorConfig.from_env(namespace=namespace)
        return cls(
            operator=operator,
            flink=FlinkConfig.from_env(),
            k8s_namespace=operator.namespace,
        )


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Load and return application settings (cached per process).

    Returns:
        A frozen `Settings` instance with all configuration values.
    """
    return Settings.from_env()
