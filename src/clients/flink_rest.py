"""Flink REST control-plane client.

This module provides a client for the JobManager REST API of one Flink
application cluster. It covers what the operator needs from the control
plane: listing live jobs and taking savepoints (plain, cancel-with-savepoint,
and stop-with-savepoint).

## Usage

```python
from clients.flink_rest import FlinkRestClient

client = FlinkRestClient(base_url="http://my-app-rest.flink:8081", name="flink/my-app")
for job in client.list_jobs():
    path = client.trigger_savepoint(job.job_id, target_directory="s3://savepoints/my-app")
```

## Savepoint operations

Flink runs savepoints asynchronously. A trigger returns a `request-id`; the
client then polls `/jobs/<jid>/savepoints/<request-id>` until the operation
is `COMPLETED` and returns its location. The wait is bounded by
`savepoint_timeout_s`. Every savepoint call therefore returns only once the
savepoint has actually been written, or raises `SavepointError`.

## Design

- Requests go through a retry session (`foundation.http`), which retries
  idempotent methods only; savepoint triggers are POSTs and are never
  replayed.
- Every request passes through a per-client circuit breaker so a dead
  JobManager fails fast.
- Transport and HTTP errors surface as `UpstreamError`.
"""

import threading
from typing import Any

import attrs
import pybreaker
import requests

from config import FlinkConfig
from core.exceptions import SavepointError, UpstreamError
from core.models import JobOverview
from foundation.circuit_breaker import with_circuit_breaker
from foundation.exceptions import PollTimeoutError
from foundation.http import create_retry_session
from foundation.retry import poll_for_value

from .mixins import BreakerSettings, CircuitBreakerMixin, LoggerMixin

SAVEPOINT_COMPLETED = "COMPLETED"


@attrs.define(frozen=False, slots=True)
class FlinkRestClient(CircuitBreakerMixin, LoggerMixin):
    """Client for the JobManager REST API of a single Flink cluster.

    Attributes:
        base_url: Base URL of the JobManager REST endpoint.
        name: Label used in logs and as circuit breaker name suffix, usually
            the application key.
        timeout_s: Per-request timeout in seconds (default: 30).
        max_retries: Retries for idempotent requests (default: 3).
        savepoint_poll_interval_s: Seconds between savepoint status checks.
        savepoint_timeout_s: Upper bound for one savepoint operation.
        circuit_breaker_threshold: Failures before the circuit opens.
        circuit_breaker_timeout: Seconds before the circuit half-opens.

    Note:
        This class is not frozen to allow session reuse and connection pooling.
    """

    base_url: str
    name: str = "flink"
    timeout_s: int = 30
    max_retries: int = 3
    savepoint_poll_interval_s: float = 2.0
    savepoint_timeout_s: float = 600.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 30
    _session: requests.Session | None = attrs.field(default=None)
    _breaker: pybreaker.CircuitBreaker = attrs.field(init=False)

    def _circuit_breaker_config(self) -> BreakerSettings:
        return BreakerSettings(
            name=f"flink-rest:{self.name}",
            failure_threshold=self.circuit_breaker_threshold,
            recovery_timeout=self.circuit_breaker_timeout,
        )

    def __attrs_post_init__(self) -> None:
        """Initialize the requests session and circuit breaker."""
        if self._session is None:
            self._session = create_retry_session(max_retries=self.max_retries)
        self._init_circuit_breaker()

    @classmethod
    def from_config(
        cls,
        base_url: str,
        config: FlinkConfig,
        name: str = "flink",
        session: requests.Session | None = None,
    ) -> "FlinkRestClient":
        """Create a client for `base_url` with settings from FlinkConfig.

        Args:
            base_url: JobManager REST base URL (from the effective config).
            config: Flink client settings.
            name: Label for logs and the circuit breaker.
            session: Optional shared requests session.

        Returns:
            Configured FlinkRestClient.
        """
        return cls(
            base_url=base_url,
            name=name,
            timeout_s=config.rest_timeout_s,
            max_retries=config.rest_max_retries,
            savepoint_poll_interval_s=config.savepoint_poll_interval_s,
            savepoint_timeout_s=config.savepoint_timeout_s,
            circuit_breaker_threshold=config.rest_circuit_breaker_threshold,
            circuit_breaker_timeout=config.rest_circuit_breaker_timeout,
            session=session,
        )

    @property
    def session(self) -> requests.Session:
        """Get the requests session, creating one if needed."""
        if self._session is None:
            self._session = create_retry_session(max_retries=self.max_retries)
        return self._session

    def close(self) -> None:
        """Close the underlying session."""
        if self._session is not None:
            self._session.close()

    @with_circuit_breaker
    def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url.rstrip('/')}{path}"
        try:
            resp = self.session.request(method, url, json=body, timeout=self.timeout_s)
        except requests.RequestException as e:
            msg = f"Flink REST request {method} {path} failed: {e}"
            raise UpstreamError(msg) from e

        if resp.status_code >= 400:
            msg = f"Flink REST {method} {path} returned {resp.status_code}: {resp.text[:500]}"
            raise UpstreamError(msg, status_code=resp.status_code)

        try:
            return resp.json()
        except ValueError as e:
            msg = f"Flink REST {method} {path} returned invalid JSON"
            raise UpstreamError(msg) from e

    def list_jobs(self) -> list[JobOverview]:
        """List the live jobs of the cluster.

        Returns:
            One JobOverview per job, in the order the JobManager reports them.

        Raises:
            UpstreamError: If the JobManager is unreachable or returns an error.
        """
        data = self._request("GET", "/jobs/overview")
        jobs = [JobOverview.from_dict(j) for j in data.get("jobs", [])]
        self._logger.debug("Listed jobs", extra={"flink_cluster": self.name, "job_count": len(jobs)})
        return jobs

    def trigger_savepoint(self, job_id: str, target_directory: str | None = None) -> str:
        """Take a savepoint of a running job and keep it running.

        Args:
            job_id: Job to savepoint.
            target_directory: Savepoint directory. None uses the cluster's
                `state.savepoints.dir`.

        Returns:
            Location of the completed savepoint.

        Raises:
            SavepointError: If the savepoint could not be taken.
            UpstreamError: If the JobManager is unreachable.
        """
        return self._savepoint_operation(
            job_id,
            f"/jobs/{job_id}/savepoints",
            {"target-directory": target_directory, "cancel-job": False},
            "savepoint",
        )

    def cancel_with_savepoint(self, job_id: str, target_directory: str | None = None) -> str:
        """Take a savepoint and cancel the job once it is written.

        Returns:
            Location of the completed savepoint.

        Raises:
            SavepointError: If the savepoint could not be taken.
            UpstreamError: If the JobManager is unreachable.
        """
        return self._savepoint_operation(
            job_id,
            f"/jobs/{job_id}/savepoints",
            {"target-directory": target_directory, "cancel-job": True},
            "cancel-with-savepoint",
        )

    def stop_with_savepoint(self, job_id: str, target_directory: str | None = None, drain: bool = False) -> str:
        """Stop the job gracefully with a final savepoint.

        Args:
            job_id: Job to stop.
            target_directory: Savepoint directory, or None for the default.
            drain: Emit MAX_WATERMARK before stopping so that event-time
                timers fire.

        Returns:
            Location of the completed savepoint.

        Raises:
            SavepointError: If the savepoint could not be taken.
            UpstreamError: If the JobManager is unreachable.
        """
        return self._savepoint_operation(
            job_id,
            f"/jobs/{job_id}/stop",
            {"targetDirectory": target_directory, "drain": drain},
            "stop-with-savepoint",
        )

    def _savepoint_operation(self, job_id: str, path: str, body: dict[str, Any], operation: str) -> str:
        body = {k: v for k, v in body.items() if v is not None}
        trigger = self._request("POST", path, body)
        request_id = trigger.get("request-id")
        if not request_id:
            msg = f"{operation} of job {job_id} was not accepted: {trigger}"
            raise SavepointError(msg)

        self._logger.info(
            "Savepoint triggered",
            extra={"flink_cluster": self.name, "job_id": job_id, "operation": operation, "request_id": request_id},
        )

        try:
            location = poll_for_value(
                lambda: self._savepoint_location(job_id, request_id),
                interval_s=self.savepoint_poll_interval_s,
                timeout_s=self.savepoint_timeout_s,
                description=f"{operation} of job {job_id}",
                logger=self._logger,
            )
        except PollTimeoutError as e:
            raise SavepointError(str(e)) from e

        self._logger.info(
            "Savepoint completed",
            extra={"flink_cluster": self.name, "job_id": job_id, "operation": operation, "location": location},
        )
        return location

    def _savepoint_location(self, job_id: str, request_id: str) -> str | None:
        """Return the savepoint location once the operation completed, else None."""
        data = self._request("GET", f"/jobs/{job_id}/savepoints/{request_id}")
        if (data.get("status") or {}).get("id") != SAVEPOINT_COMPLETED:
            return None

        operation = data.get("operation") or {}
        failure = operation.get("failure-cause")
        if failure:
            cause = failure.get("stack-trace", str(failure)) if isinstance(failure, dict) else str(failure)
            msg = f"Savepoint of job {job_id} failed: {cause.splitlines()[0] if cause else 'unknown cause'}"
            raise SavepointError(msg)

        location = operation.get("location")
        if not location:
            msg = f"Savepoint of job {job_id} completed without a location"
            raise SavepointError(msg)
        return location


class FlinkRestClientPool:
    """Keeps one FlinkRestClient per application.

    Reusing the client across reconciliation passes and poll cycles keeps its
    connection pool and its circuit breaker state. A client is rebuilt when
    the application's REST URL changes.

    Args:
        config: Flink client settings applied to every client.
    """

    def __init__(self, config: FlinkConfig) -> None:
        self.config = config
        self._clients: dict[str, FlinkRestClient] = {}
        self._lock = threading.Lock()

    def get(self, key: str, base_url: str) -> FlinkRestClient:
        """Return the client of application `key` pointing at `base_url`."""
        with self._lock:
            existing = self._clients.get(key)
            if existing is not None and existing.base_url == base_url:
                return existing
            if existing is not None:
                existing.close()
            created = FlinkRestClient.from_config(base_url, self.config, name=key)
            self._clients[key] = created
            return created

    def discard(self, key: str) -> None:
        """Close and forget the client of application `key`."""
        with self._lock:
            existing = self._clients.pop(key, None)
        if existing is not None:
            existing.close()

    def close(self) -> None:
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for c in clients:
            c.close()
