"""Effective configuration resolution.

`resolve_effective_config()` projects an application's spec plus the
environment defaults from `FlinkConfig` onto the full set of values needed to
deploy and talk to a Flink application cluster. It is resolved once per
reconciliation pass; the result is frozen and never mutated afterwards.

The Flink configuration keys follow Flink's native Kubernetes application mode
(`execution.target: kubernetes-application`). Entries from the application's
`flinkConfig` are applied last and win over derived values.
"""

import re
from collections.abc import Mapping
from types import MappingProxyType

import attrs

from config import FlinkConfig
from core.exceptions import ConfigurationError
from core.models import FlinkApplication, ResourceRequest

# Flink memory size: number with optional unit (b, k, kb, m, mb, g, gb, t, tb, bytes, ...)
_MEMORY_PATTERN = re.compile(
    r"^\d+(\.\d+)?\s*(b|bytes|k|kb|kibibytes|m|mb|mebibytes|g|gb|gibibytes|t|tb|tebibytes)?$",
    re.IGNORECASE,
)

REST_PORT_KEY = "rest.port"


@attrs.define(frozen=True, slots=True)
class EffectiveConfig:
    """Frozen projection of a spec and the environment defaults.

    Attributes:
        cluster_id: Flink cluster id; equals the application name.
        namespace: Namespace the cluster runs in.
        image: Container image.
        rest_port: JobManager REST port.
        rest_url: Base URL of the JobManager REST API.
        flink_conf: Read-only mapping of Flink configuration keys.
        entry_class: Main class, if given.
        main_args: Program arguments.
        service_account: Service account of the JobManager pods.
    """

    cluster_id: str
    namespace: str
    image: str
    rest_port: int
    rest_url: str
    flink_conf: Mapping[str, str] = attrs.field(converter=lambda m: MappingProxyType(dict(m)))
    entry_class: str | None = None
    main_args: tuple[str, ...] = ()
    service_account: str = "flink"

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.cluster_id}"


def _resource_conf(prefix: str, resource: ResourceRequest | None, field: str) -> dict[str, str]:
    conf: dict[str, str] = {}
    if resource is None:
        return conf
    if resource.mem is not None:
        mem = resource.mem.strip()
        if not _MEMORY_PATTERN.match(mem):
            msg = f"{field}.mem is not a valid memory size: {resource.mem!r}"
            raise ConfigurationError(msg)
        conf[f"{prefix}.memory.process.size"] = mem
    if resource.cpu is not None:
        try:
            cpu = float(resource.cpu)
        except (TypeError, ValueError) as e:
            msg = f"{field}.cpu is not a number: {resource.cpu!r}"
            raise ConfigurationError(msg) from e
        if cpu <= 0:
            msg = f"{field}.cpu must be positive, got {cpu}"
            raise ConfigurationError(msg)
        conf[f"kubernetes.{prefix}.cpu"] = str(cpu)
    return conf


def _resolve_parallelism(value: object) -> int:
    if value is None:
        return 1
    if isinstance(value, bool) or not isinstance(value, int):
        msg = f"parallelism must be an integer, got {value!r}"
        raise ConfigurationError(msg)
    return value if value > 0 else 1


def _resolve_rest_port(conf: Mapping[str, str], default: int) -> int:
    raw = conf.get(REST_PORT_KEY)
    if raw is None:
        return default
    try:
        port = int(raw)
    except ValueError as e:
        msg = f"{REST_PORT_KEY} must be an integer, got {raw!r}"
        raise ConfigurationError(msg) from e
    if not 0 < port < 65536:
        msg = f"{REST_PORT_KEY} out of range: {port}"
        raise ConfigurationError(msg)
    return port


def resolve_effective_config(app: FlinkApplication, flink: FlinkConfig) -> EffectiveConfig:
    """Resolve the effective configuration of an application.

    Args:
        app: The application as accepted from the watch cache.
        flink: Environment-level Flink defaults.

    Returns:
        The frozen EffectiveConfig.

    Raises:
        ConfigurationError: If `imageName` or `jarURI` is missing, parallelism
            is not an integer, a resource quantity is malformed, or `rest.port`
            is not a valid port.
    """
    spec = app.spec
    if not app.name or not app.namespace:
        msg = "Application must have a name and a namespace"
        raise ConfigurationError(msg)
    if not spec.image_name:
        msg = f"{app.key}: imageName is required"
        raise ConfigurationError(msg)
    if not spec.jar_uri:
        msg = f"{app.key}: jarURI is required"
        raise ConfigurationError(msg)

    parallelism = _resolve_parallelism(spec.parallelism)
    rest_port = _resolve_rest_port(spec.flink_config, flink.default_rest_port)

    conf: dict[str, str] = dict(flink.default_conf)
    conf.update(
        {
            "execution.target": "kubernetes-application",
            "kubernetes.cluster-id": app.name,
            "kubernetes.namespace": app.namespace,
            "kubernetes.container.image": spec.image_name,
            "kubernetes.service-account": flink.service_account,
            "pipeline.jars": spec.jar_uri,
            "parallelism.default": str(parallelism),
            REST_PORT_KEY: str(rest_port),
        }
    )
    if spec.image_pull_policy:
        conf["kubernetes.container.image.pull-policy"] = spec.image_pull_policy
    if spec.image_pull_secrets:
        conf["kubernetes.container.image.pull-secrets"] = ";".join(spec.image_pull_secrets)
    if spec.entry_class:
        conf["$internal.application.main"] = spec.entry_class
    if spec.main_args:
        conf["$internal.application.program-args"] = ";".join(spec.main_args)
    conf.update(_resource_conf("jobmanager", spec.job_manager_resource, "jobManagerResource"))
    conf.update(_resource_conf("taskmanager", spec.task_manager_resource, "taskManagerResource"))
    if spec.savepoints_dir:
        conf["state.savepoints.dir"] = spec.savepoints_dir
    if spec.from_savepoint:
        conf["execution.savepoint.path"] = spec.from_savepoint
        conf["execution.savepoint.ignore-unclaimed-state"] = str(spec.allow_non_restored_state).lower()

    conf.update(spec.flink_config)

    rest_url = flink.rest_url_template.format(name=app.name, namespace=app.namespace, port=rest_port)

    return EffectiveConfig(
        cluster_id=app.name,
        namespace=app.namespace,
        image=spec.image_name,
        rest_port=rest_port,
        rest_url=rest_url,
        flink_conf=conf,
        entry_class=spec.entry_class,
        main_args=spec.main_args,
        service_account=flink.service_account,
    )
