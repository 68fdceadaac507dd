"""Domain models for FlinkApplication resources.

This module defines the structured domain classes the operator works with
instead of raw Kubernetes dictionaries. The custom resource uses camelCase on
the wire; the classes here use snake_case attributes and convert at the edges
via `from_dict()` / `to_dict()`.

All classes use `attrs` for concise, correct class definitions. Specs are
frozen: a new spec is derived with `attrs.evolve` (see
`FlinkApplicationSpec.with_from_savepoint`) rather than mutated in place.
"""

import hashlib
import json
import logging
from datetime import datetime, timezone
from typing import Any

import attrs

logger = logging.getLogger("operator.models")

# Custom resource coordinates
FLINK_APP_GROUP = "flink.k8s.io"
FLINK_APP_VERSION = "v1alpha1"
FLINK_APP_PLURAL = "flinkapplications"
FLINK_APP_KIND = "FlinkApplication"

RECONCILE_STATE_UPDATE_FAILED = "UPDATE_FAILED"

_TRUE_STRINGS = frozenset({"true", "yes", "1", "on"})


def make_key(namespace: str, name: str) -> str:
    """Build the application key `<namespace>/<name>`."""
    return f"{namespace}/{name}"


def is_valid_key(key: object) -> bool:
    """Return True if `key` is a string with exactly one `/` and non-empty parts."""
    if not isinstance(key, str) or key.count("/") != 1:
        return False
    namespace, name = key.split("/")
    return bool(namespace) and bool(name)


def split_key(key: str) -> tuple[str, str]:
    """Split an application key into (namespace, name).

    Raises:
        ValueError: If the key is malformed.
    """
    if not is_valid_key(key):
        msg = f"Invalid application key: {key!r}"
        raise ValueError(msg)
    namespace, name = key.split("/")
    return namespace, name


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _parse_update_time(raw: Any) -> datetime:
    # Epoch milliseconds (as numbers or digit strings) or ISO-8601
    try:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
        if isinstance(raw, str) and raw.strip().isdigit():
            return datetime.fromtimestamp(int(raw) / 1000, tz=timezone.utc)
        if isinstance(raw, str):
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning("Unparseable job status updateTime, using current time", extra={"update_time": raw})
    return datetime.now(timezone.utc)


def _as_int(value: Any, default: int) -> Any:
    # Non-numeric values are kept so configuration resolution can reject them
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return value


@attrs.define(frozen=True, slots=True)
class ResourceRequest:
    """Memory and CPU request for a JobManager or TaskManager.

    Attributes:
        mem: Memory quantity as written in the resource, e.g. `"2048m"` or
            `"2g"`. Passed to Flink's `*.memory.process.size`.
        cpu: CPU cores, e.g. `1.0`.
    """

    mem: str | None = None
    cpu: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ResourceRequest | None":
        if not data:
            return None
        cpu = data.get("cpu")
        return cls(
            mem=str(data["mem"]) if data.get("mem") is not None else None,
            cpu=cpu,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.mem is not None:
            result["mem"] = self.mem
        if self.cpu is not None:
            result["cpu"] = self.cpu
        return result


@attrs.define(frozen=True, slots=True)
class FlinkApplicationSpec:
    """Desired state of a FlinkApplication.

    Attributes:
        image_name: Container image of the Flink cluster (`imageName`).
        image_pull_policy: Kubernetes image pull policy (`imagePullPolicy`).
        image_pull_secrets: Names of image pull secrets (`imagePullSecrets`).
        jar_uri: URI of the job artifact (`jarURI`).
        main_args: Program arguments (`mainArgs`).
        entry_class: Main class of the job (`entryClass`).
        parallelism: Default parallelism (`parallelism`). Absent means 1.
        job_manager_resource: JobManager memory/CPU (`jobManagerResource`).
        task_manager_resource: TaskManager memory/CPU (`taskManagerResource`).
        from_savepoint: Savepoint path to restore from (`fromSavepoint`).
        allow_non_restored_state: Skip state that cannot be mapped to the new
            program (`allowNonRestoredState`).
        savepoints_dir: Target directory for savepoints (`savepointsDir`).
        savepoint_generation: Raising it requests a savepoint
            (`savepointGeneration`).
        drain_flag: Drain the pipeline when stopping for an update
            (`drainFlag`).
        flink_config: Free-form Flink configuration (`flinkConfig`).
    """

    image_name: str | None = None
    image_pull_policy: str | None = None
    image_pull_secrets: tuple[str, ...] = ()
    jar_uri: str | None = None
    main_args: tuple[str, ...] = ()
    entry_class: str | None = None
    parallelism: Any = 1
    job_manager_resource: ResourceRequest | None = None
    task_manager_resource: ResourceRequest | None = None
    from_savepoint: str | None = None
    allow_non_restored_state: bool = False
    savepoints_dir: str | None = None
    savepoint_generation: int = 0
    drain_flag: bool = False
    flink_config: dict[str, str] = attrs.field(factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FlinkApplicationSpec":
        """Create a spec from the camelCase `spec` section of the resource."""
        data = data or {}
        generation = _as_int(data.get("savepointGeneration"), 0)
        return cls(
            image_name=data.get("imageName"),
            image_pull_policy=data.get("imagePullPolicy"),
            image_pull_secrets=_as_str_tuple(data.get("imagePullSecrets")),
            jar_uri=data.get("jarURI"),
            main_args=_as_str_tuple(data.get("mainArgs")),
            entry_class=data.get("entryClass"),
            parallelism=_as_int(data.get("parallelism"), 1),
            job_manager_resource=ResourceRequest.from_dict(data.get("jobManagerResource")),
            task_manager_resource=ResourceRequest.from_dict(data.get("taskManagerResource")),
            from_savepoint=data.get("fromSavepoint"),
            allow_non_restored_state=_as_bool(data.get("allowNonRestoredState", False)),
            savepoints_dir=data.get("savepointsDir"),
            savepoint_generation=generation if isinstance(generation, int) else 0,
            drain_flag=_as_bool(data.get("drainFlag", False)),
            flink_config={str(k): str(v) for k, v in (data.get("flinkConfig") or {}).items()},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize back to the camelCase wire form, omitting unset fields."""
        result: dict[str, Any] = {
            "imageName": self.image_name,
            "imagePullPolicy": self.image_pull_policy,
            "imagePullSecrets": list(self.image_pull_secrets) or None,
            "jarURI": self.jar_uri,
            "mainArgs": list(self.main_args) or None,
            "entryClass": self.entry_class,
            "parallelism": self.parallelism,
            "jobManagerResource": self.job_manager_resource.to_dict() if self.job_manager_resource else None,
            "taskManagerResource": self.task_manager_resource.to_dict() if self.task_manager_resource else None,
            "fromSavepoint": self.from_savepoint,
            "allowNonRestoredState": self.allow_non_restored_state,
            "savepointsDir": self.savepoints_dir,
            "savepointGeneration": self.savepoint_generation,
            "drainFlag": self.drain_flag,
            "flinkConfig": dict(self.flink_config) or None,
        }
        return {k: v for k, v in result.items() if v is not None}

    def with_from_savepoint(self, path: str) -> "FlinkApplicationSpec":
        """Return a copy of this spec that restores from `path`."""
        return attrs.evolve(self, from_savepoint=path)

    def with_savepoint_generation(self, generation: int) -> "FlinkApplicationSpec":
        return attrs.evolve(self, savepoint_generation=generation)

    def fingerprint(self) -> str:
        """Stable hash of the spec, used to recognise a spec seen before."""
        payload = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@attrs.define(frozen=True, slots=True)
class JobStatus:
    """Observed state of one Flink job, as published on the resource.

    Attributes:
        job_name: Job name reported by the JobManager.
        job_id: Job identifier assigned by the JobManager.
        state: Execution state (RUNNING, FAILED, ...).
        update_time: When the state was observed (UTC).
        savepoint_location: Last known savepoint path of this job, if any.
    """

    job_name: str
    job_id: str
    state: str
    update_time: datetime
    savepoint_location: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobStatus":
        """Create from a published job status; malformed timestamps do not raise."""
        return cls(
            job_name=data.get("jobName", ""),
            job_id=data.get("jobId", ""),
            state=data.get("state", ""),
            update_time=_parse_update_time(data.get("updateTime")),
            savepoint_location=data.get("savepointLocation"),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "jobName": self.job_name,
            "jobId": self.job_id,
            "state": self.state,
            "updateTime": self.update_time.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if self.savepoint_location is not None:
            result["savepointLocation"] = self.savepoint_location
        return result


@attrs.define(frozen=True, slots=True)
class FlinkApplicationStatus:
    """Observed status of a FlinkApplication.

    Attributes:
        job_statuses: One record per live job, in the order the JobManager
            listed them.
        reconcile_state: Set to `UPDATE_FAILED` when an image update left the
            application unmanaged.
        error: Human readable reason accompanying `reconcile_state`.
    """

    job_statuses: tuple[JobStatus, ...] = ()
    reconcile_state: str | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FlinkApplicationStatus":
        data = data or {}
        entries = [j for j in data.get("jobStatuses") or [] if isinstance(j, dict)]
        return cls(
            job_statuses=tuple(JobStatus.from_dict(j) for j in entries),
            reconcile_state=data.get("reconcileState"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        # Explicit nulls so a merge-patch clears a previous failure marker
        return {
            "jobStatuses": [j.to_dict() for j in self.job_statuses],
            "reconcileState": self.reconcile_state,
            "error": self.error,
        }


@attrs.define(frozen=True, slots=True)
class FlinkApplication:
    """A FlinkApplication custom resource.

    Attributes:
        namespace: Namespace of the resource.
        name: Name of the resource; also the Flink cluster id.
        spec: Desired state.
        status: Last published status.
        uid: Kubernetes UID.
        resource_version: Kubernetes resourceVersion at read time.
    """

    namespace: str
    name: str
    spec: FlinkApplicationSpec = attrs.field(factory=FlinkApplicationSpec)
    status: FlinkApplicationStatus = attrs.field(factory=FlinkApplicationStatus)
    uid: str | None = None
    resource_version: str | None = None

    @property
    def key(self) -> str:
        return make_key(self.namespace, self.name)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FlinkApplication":
        """Create from a resource dictionary as returned by CustomObjectsApi."""
        metadata = data.get("metadata") or {}
        return cls(
            namespace=metadata.get("namespace", ""),
            name=metadata.get("name", ""),
            spec=FlinkApplicationSpec.from_dict(data.get("spec")),
            status=FlinkApplicationStatus.from_dict(data.get("status")),
            uid=metadata.get("uid"),
            resource_version=metadata.get("resourceVersion"),
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid is not None:
            metadata["uid"] = self.uid
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": f"{FLINK_APP_GROUP}/{FLINK_APP_VERSION}",
            "kind": FLINK_APP_KIND,
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    def with_spec(self, spec: FlinkApplicationSpec) -> "FlinkApplication":
        return attrs.evolve(self, spec=spec)


@attrs.define(frozen=True, slots=True)
class JobOverview:
    """One entry of the JobManager's `/jobs/overview` listing.

    Attributes:
        job_id: Job identifier (`jid`).
        name: Job name.
        state: Execution state.
        start_time: Start time in epoch milliseconds, if reported.
    """

    job_id: str
    name: str
    state: str
    start_time: int | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobOverview":
        return cls(
            job_id=data["jid"],
            name=data.get("name", ""),
            state=data.get("state", "UNKNOWN"),
            start_time=data.get("start-time"),
        )
