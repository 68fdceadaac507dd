"""Kubernetes API clients for the resources the operator reads and writes.

This module wraps the `kubernetes` Python client for three concerns:

- `FlinkApplicationClient`: the FlinkApplication custom resources
  (`flink.k8s.io/v1alpha1`), including status publication.
- `DeploymentClient`: JobManager Deployments (existence checks, foreground
  deletion).
- `IngressClient`: the operator's single Ingress.

Reads are retried on transient API errors through `RetryWithBackoff` with a
`KubernetesErrorClassifier`; every `ApiException` that escapes is translated
into `UpstreamError`. A 404 on a read is not an error: the getters return None.
"""

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as Urllib3HTTPError

from core.exceptions import UpstreamError
from core.models import FLINK_APP_GROUP, FLINK_APP_PLURAL, FLINK_APP_VERSION, FlinkApplication
from foundation.retry import HTTPErrorClassifier, RetryWithBackoff

logger = logging.getLogger("operator.k8s")


def load_kubernetes_config() -> None:
    """Load Kubernetes client configuration.

    Tries in-cluster config first (when running in a pod) and falls back to
    the local kubeconfig for development.

    Raises:
        kubernetes.config.ConfigException: If neither configuration is
            available. This is fatal at startup.
    """
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig from local machine")


class KubernetesErrorClassifier(HTTPErrorClassifier):
    """Error classifier for Kubernetes API calls.

    Retriable:
        - ApiException with 429 or 5xx status
        - urllib3 connection errors (API server unreachable)

    Non-retriable:
        - Other ApiExceptions (404, 409, 422, ...)
        - Everything else
    """

    def is_retriable(self, exc: BaseException) -> bool:
        if isinstance(exc, ApiException):
            return self.is_retriable_http_status(exc.status)
        return isinstance(exc, Urllib3HTTPError)

    def get_error_details(self, exc: BaseException) -> dict[str, Any]:
        if isinstance(exc, ApiException):
            return {"status": exc.status, "reason": exc.reason}
        return {}


def _default_retry() -> RetryWithBackoff:
    return RetryWithBackoff(
        classifier=KubernetesErrorClassifier(),
        logger=logging.getLogger("operator.k8s.retry"),
    )


class FlinkApplicationClient:
    """Client for FlinkApplication custom resources.

    Example:
        >>> apps = FlinkApplicationClient()
        >>> app = apps.get("flink", "my-app")
        >>> apps.patch_status("flink", "my-app", {"jobStatuses": []})
    """

    def __init__(
        self,
        api: client.CustomObjectsApi | None = None,
        retry: RetryWithBackoff | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api: CustomObjectsApi to use. Created from the loaded
                configuration if None.
            retry: Retry policy for reads.
        """
        self.api = api or client.CustomObjectsApi()
        self.retry = retry or _default_retry()
        self.group = FLINK_APP_GROUP
        self.version = FLINK_APP_VERSION
        self.plural = FLINK_APP_PLURAL

    def get(self, namespace: str, name: str) -> FlinkApplication | None:
        """Read one FlinkApplication.

        Returns:
            The application, or None if it does not exist.

        Raises:
            UpstreamError: If the API call fails.
        """
        try:
            obj = self.retry.call(
                self.api.get_namespaced_custom_object,
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
            )
        except ApiException as e:
            if e.status == 404:
                return None
            msg = f"Failed to read FlinkApplication {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e
        return FlinkApplication.from_dict(obj)

    def list_raw(self, namespace: str, **kwargs: Any) -> dict[str, Any]:
        """List FlinkApplications as raw API objects.

        This is the list function handed to the informer, which needs the
        list `resourceVersion` and supports `watch=True` passthrough.
        """
        return self.api.list_namespaced_custom_object(
            group=self.group,
            version=self.version,
            namespace=namespace,
            plural=self.plural,
            **kwargs,
        )

    def list(self, namespace: str) -> list[FlinkApplication]:
        """List all FlinkApplications in a namespace.

        Raises:
            UpstreamError: If the API call fails.
        """
        try:
            result = self.retry.call(self.list_raw, namespace)
        except ApiException as e:
            msg = f"Failed to list FlinkApplications in {namespace}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e
        return [FlinkApplication.from_dict(item) for item in result.get("items", [])]

    def patch_status(self, namespace: str, name: str, status: dict[str, Any]) -> None:
        """Replace the published status of a FlinkApplication.

        The resource has no status subresource, so the status is written with
        a JSON merge-patch on the main object. No resourceVersion is sent:
        the last writer wins.

        Raises:
            UpstreamError: If the API call fails.
        """
        try:
            self.api.patch_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
                body={"status": status},
            )
        except ApiException as e:
            msg = f"Failed to publish status of {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e


class DeploymentClient:
    """Client for JobManager Deployments."""

    def __init__(self, api: client.AppsV1Api | None = None, retry: RetryWithBackoff | None = None) -> None:
        self.api = api or client.AppsV1Api()
        self.retry = retry or _default_retry()

    def get(self, namespace: str, name: str) -> client.V1Deployment | None:
        """Read a Deployment.

        Returns:
            The Deployment, or None if it does not exist.

        Raises:
            UpstreamError: If the API call fails for any other reason.
        """
        try:
            return self.retry.call(self.api.read_namespaced_deployment, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            msg = f"Failed to read deployment {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e

    def exists(self, namespace: str, name: str) -> bool:
        return self.get(namespace, name) is not None

    def delete(self, namespace: str, name: str, cascading: bool = True) -> bool:
        """Delete a Deployment, best effort.

        Args:
            namespace: Namespace of the Deployment.
            name: Deployment name.
            cascading: Use foreground cascading deletion so that dependents
                (ReplicaSets, pods, TaskManagers owned by the JobManager) are
                removed first.

        Returns:
            True if a delete was issued, False if the Deployment was already
            gone or the call failed. Failures are logged, not raised.
        """
        propagation = "Foreground" if cascading else "Orphan"
        try:
            self.api.delete_namespaced_deployment(
                name,
                namespace,
                body=client.V1DeleteOptions(propagation_policy=propagation),
            )
        except ApiException as e:
            if e.status == 404:
                logger.info("Deployment already gone", extra={"namespace": namespace, "deployment": name})
            else:
                logger.exception(
                    "Failed to delete deployment",
                    extra={"namespace": namespace, "deployment": name, "status": e.status, "reason": e.reason},
                )
            return False
        logger.info(
            "Deleted deployment",
            extra={"namespace": namespace, "deployment": name, "propagation_policy": propagation},
        )
        return True


class IngressClient:
    """Client for the operator's Ingress (networking.k8s.io/v1)."""

    def __init__(self, api: client.NetworkingV1Api | None = None, retry: RetryWithBackoff | None = None) -> None:
        self.api = api or client.NetworkingV1Api()
        self.retry = retry or _default_retry()

    def get(self, namespace: str, name: str) -> client.V1Ingress | None:
        try:
            return self.retry.call(self.api.read_namespaced_ingress, name, namespace)
        except ApiException as e:
            if e.status == 404:
                return None
            msg = f"Failed to read ingress {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e

    def create(self, namespace: str, body: dict[str, Any]) -> None:
        try:
            self.api.create_namespaced_ingress(namespace, body)
        except ApiException as e:
            msg = f"Failed to create ingress in {namespace}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e

    def replace(self, namespace: str, name: str, body: dict[str, Any]) -> None:
        try:
            self.api.replace_namespaced_ingress(name, namespace, body)
        except ApiException as e:
            msg = f"Failed to replace ingress {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e

    def delete(self, namespace: str, name: str) -> None:
        """Delete the Ingress. A missing Ingress is not an error."""
        try:
            self.api.delete_namespaced_ingress(name, namespace)
        except ApiException as e:
            if e.status == 404:
                return
            msg = f"Failed to delete ingress {namespace}/{name}: {e.reason}"
            raise UpstreamError(msg, status_code=e.status) from e

    def create_or_replace(self, namespace: str, name: str, body: dict[str, Any]) -> None:
        """Create the Ingress, or replace it if it already exists.

        The current resourceVersion is carried over on replace.

        Raises:
            UpstreamError: If the API call fails.
        """
        existing = self.get(namespace, name)
        if existing is None:
            self.create(namespace, body)
            return
        body = dict(body)
        metadata = dict(body.get("metadata") or {})
        metadata["resourceVersion"] = existing.metadata.resource_version
        body["metadata"] = metadata
        self.replace(namespace, name, body)
