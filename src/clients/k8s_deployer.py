"""Deployer for Flink native-Kubernetes application clusters.

`FlinkDeployer.run()` creates the Kubernetes objects of one application
cluster from its effective configuration:

1. The JobManager `Deployment` named after the cluster id, running
   `kubernetes-jobmanager.sh kubernetes-application`.
2. A `ConfigMap` `flink-config-<cluster-id>` holding `flink-conf.yaml`,
   mounted at `/opt/flink/conf`.
3. The REST `Service` `<cluster-id>-rest`.

The ConfigMap and Service carry an owner reference to the Deployment, so a
foreground delete of the Deployment removes the whole cluster. TaskManagers are
started by Flink's own Kubernetes resource manager and are owned by the
JobManager as well.
"""

import logging
import re
from collections.abc import Callable
from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from core.effective_config import EffectiveConfig
from core.exceptions import DeployError

logger = logging.getLogger("operator.deployer")

FLINK_CONF_DIR = "/opt/flink/conf"

_MEMORY_UNITS = {
    "": 1,
    "b": 1,
    "bytes": 1,
    "k": 1024,
    "kb": 1024,
    "kibibytes": 1024,
    "m": 1024**2,
    "mb": 1024**2,
    "mebibytes": 1024**2,
    "g": 1024**3,
    "gb": 1024**3,
    "gibibytes": 1024**3,
    "t": 1024**4,
    "tb": 1024**4,
    "tebibytes": 1024**4,
}
_MEMORY_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([a-z]*)$", re.IGNORECASE)


def flink_memory_to_bytes(size: str) -> int:
    """Convert a Flink memory size (`1600m`, `2 gb`) into bytes.

    Flink units are binary: `1m` is 1 MiB.

    Raises:
        ValueError: If the size cannot be parsed.
    """
    match = _MEMORY_PATTERN.match(size.strip())
    if not match or match.group(2).lower() not in _MEMORY_UNITS:
        msg = f"Invalid memory size: {size!r}"
        raise ValueError(msg)
    return int(float(match.group(1)) * _MEMORY_UNITS[match.group(2).lower()])


def render_flink_conf(conf: dict[str, str] | Any) -> str:
    """Render Flink configuration entries as `flink-conf.yaml` lines."""
    return "".join(f"{key}: {value}\n" for key, value in conf.items())


def cluster_labels(cluster_id: str) -> dict[str, str]:
    return {"app": cluster_id, "type": "flink-native-kubernetes"}


class FlinkDeployer:
    """Creates Flink application clusters.

    Example:
        >>> deployer = FlinkDeployer()
        >>> deployer.run(effective_config)
    """

    def __init__(
        self,
        apps_api: client.AppsV1Api | None = None,
        core_api: client.CoreV1Api | None = None,
    ) -> None:
        self.apps_api = apps_api or client.AppsV1Api()
        self.core_api = core_api or client.CoreV1Api()

    def run(self, cfg: EffectiveConfig) -> None:
        """Deploy the application cluster described by `cfg`.

        Args:
            cfg: Effective configuration of the application.

        Raises:
            DeployError: If any of the objects could not be created.
        """
        try:
            deployment = self.apps_api.create_namespaced_deployment(cfg.namespace, self._deployment(cfg))
        except ApiException as e:
            logger.exception(
                "Failed to create JobManager deployment",
                extra={"cluster_id": cfg.cluster_id, "namespace": cfg.namespace, "status": e.status},
            )
            msg = f"Failed to create JobManager deployment {cfg.key}: {e.reason}"
            raise DeployError(msg) from e

        owner = self._owner_reference(deployment, cfg.cluster_id)
        self._apply_config_map(cfg, owner)
        self._apply_service(cfg, owner)

        logger.info(
            "Deployed Flink application cluster",
            extra={
                "cluster_id": cfg.cluster_id,
                "namespace": cfg.namespace,
                "image": cfg.image,
                "from_savepoint": cfg.flink_conf.get("execution.savepoint.path"),
            },
        )

    @staticmethod
    def config_map_name(cluster_id: str) -> str:
        return f"flink-config-{cluster_id}"

    @staticmethod
    def rest_service_name(cluster_id: str) -> str:
        return f"{cluster_id}-rest"

    @staticmethod
    def _owner_reference(deployment: Any, cluster_id: str) -> dict[str, Any]:
        uid = deployment.metadata.uid if hasattr(deployment, "metadata") else deployment["metadata"]["uid"]
        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "name": cluster_id,
            "uid": uid,
            "controller": True,
            "blockOwnerDeletion": True,
        }

    def _container_resources(self, cfg: EffectiveConfig) -> dict[str, Any]:
        resources: dict[str, str] = {}
        memory = cfg.flink_conf.get("jobmanager.memory.process.size")
        if memory:
            try:
                resources["memory"] = str(flink_memory_to_bytes(memory))
            except ValueError as e:
                raise DeployError(str(e)) from e
        cpu = cfg.flink_conf.get("kubernetes.jobmanager.cpu")
        if cpu:
            resources["cpu"] = cpu
        if not resources:
            return {}
        return {"requests": resources, "limits": resources}

    def _deployment(self, cfg: EffectiveConfig) -> dict[str, Any]:
        labels = {**cluster_labels(cfg.cluster_id), "component": "jobmanager"}
        container: dict[str, Any] = {
            "name": "flink-main-container",
            "image": cfg.image,
            "imagePullPolicy": cfg.flink_conf.get("kubernetes.container.image.pull-policy", "IfNotPresent"),
            "command": ["/docker-entrypoint.sh"],
            "args": ["bash", "-c", "$FLINK_HOME/bin/kubernetes-jobmanager.sh kubernetes-application"],
            "env": [
                {"name": "FLINK_CONF_DIR", "value": FLINK_CONF_DIR},
                {"name": "_POD_IP_ADDRESS", "valueFrom": {"fieldRef": {"fieldPath": "status.podIP"}}},
            ],
            "ports": [
                {"name": "rest", "containerPort": cfg.rest_port},
                {"name": "jobmanager-rpc", "containerPort": 6123},
                {"name": "blobserver", "containerPort": 6124},
            ],
            "volumeMounts": [{"name": "flink-config-volume", "mountPath": FLINK_CONF_DIR}],
        }
        resources = self._container_resources(cfg)
        if resources:
            container["resources"] = resources

        pod_spec: dict[str, Any] = {
            "serviceAccountName": cfg.service_account,
            "containers": [container],
            "volumes": [
                {
                    "name": "flink-config-volume",
                    "configMap": {
                        "name": self.config_map_name(cfg.cluster_id),
                        "items": [{"key": "flink-conf.yaml", "path": "flink-conf.yaml"}],
                    },
                }
            ],
        }
        secrets = cfg.flink_conf.get("kubernetes.container.image.pull-secrets")
        if secrets:
            pod_spec["imagePullSecrets"] = [{"name": s} for s in secrets.split(";") if s]

        return {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": cfg.cluster_id, "namespace": cfg.namespace, "labels": labels},
            "spec": {
                "replicas": 1,
                "selector": {"matchLabels": labels},
                "template": {"metadata": {"labels": labels}, "spec": pod_spec},
            },
        }

    def _apply_config_map(self, cfg: EffectiveConfig, owner: dict[str, Any]) -> None:
        name = self.config_map_name(cfg.cluster_id)
        body = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {
                "name": name,
                "namespace": cfg.namespace,
                "labels": cluster_labels(cfg.cluster_id),
                "ownerReferences": [owner],
            },
            "data": {"flink-conf.yaml": render_flink_conf(cfg.flink_conf)},
        }
        self._create_or_replace(
            "config map",
            name,
            cfg,
            lambda: self.core_api.create_namespaced_config_map(cfg.namespace, body),
            lambda: self.core_api.replace_namespaced_config_map(name, cfg.namespace, body),
        )

    def _apply_service(self, cfg: EffectiveConfig, owner: dict[str, Any]) -> None:
        name = self.rest_service_name(cfg.cluster_id)
        labels = {**cluster_labels(cfg.cluster_id), "component": "jobmanager"}
        body = {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {
                "name": name,
                "namespace": cfg.namespace,
                "labels": cluster_labels(cfg.cluster_id),
                "ownerReferences": [owner],
            },
            "spec": {
                "type": "ClusterIP",
                "selector": labels,
                "ports": [{"name": "rest", "port": cfg.rest_port, "targetPort": cfg.rest_port}],
            },
        }
        self._create_or_replace(
            "service",
            name,
            cfg,
            lambda: self.core_api.create_namespaced_service(cfg.namespace, body),
            # A Service replace needs the existing clusterIP, patch instead
            lambda: self.core_api.patch_namespaced_service(name, cfg.namespace, body),
        )

    def _create_or_replace(
        self,
        kind: str,
        name: str,
        cfg: EffectiveConfig,
        create: Callable[[], Any],
        replace: Callable[[], Any],
    ) -> None:
        try:
            create()
            return
        except ApiException as e:
            if e.status != 409:
                logger.exception(
                    "Failed to create cluster object",
                    extra={"kind": kind, "name": name, "namespace": cfg.namespace, "status": e.status},
                )
                msg = f"Failed to create {kind} {cfg.namespace}/{name}: {e.reason}"
                raise DeployError(msg) from e

        try:
            replace()
        except ApiException as e:
            logger.exception(
                "Failed to update existing cluster object",
                extra={"kind": kind, "name": name, "namespace": cfg.namespace, "status": e.status},
            )
            msg = f"Failed to update {kind} {cfg.namespace}/{name}: {e.reason}"
            raise DeployError(msg) from e
