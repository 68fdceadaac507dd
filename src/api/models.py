"""Pydantic response models for the operator's HTTP surface.

The HTTP surface is read-only: it exposes probes and snapshots of the
controller's in-memory state for debugging. All models use Pydantic for
serialization and OpenAPI schema generation.

## Response Models

- `ReadinessResponse`: Result of the readiness probe.
- `ApplicationSummary` / `ApplicationsResponse`: Managed applications.
- `UnmanagedApplication` / `UnmanagedResponse`: Applications left unmanaged
  after a failed image update.
- `SavepointRecord` / `SavepointsResponse`: Savepoint ledger contents.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class ReadinessResponse(BaseModel):
    """Readiness of the controller.

    Attributes:
        status: `ready` or `not ready`.
        informer_synced: Whether the initial list of FlinkApplications completed.
    """

    status: str = Field(description="ready or not ready")
    informer_synced: bool = Field(description="Initial list of resources completed")


class ApplicationSummary(BaseModel):
    """One managed application as recorded in the registry.

    Example:
        ```json
        {
            "key": "flink/my-app",
            "namespace": "flink",
            "name": "my-app",
            "image": "flink:1.17",
            "savepoint_generation": 2,
            "from_savepoint": "s3://savepoints/my-app/savepoint-1a2b3c",
            "rest_url": "http://my-app-rest.flink:8081"
        }
        ```
    """

    key: str
    namespace: str
    name: str
    image: str
    savepoint_generation: int
    from_savepoint: str | None = None
    rest_url: str


class ApplicationsResponse(BaseModel):
    items: list[ApplicationSummary]
    total: int


class UnmanagedApplication(BaseModel):
    """An application whose image update failed.

    Attributes:
        key: Application key.
        reason: Why the update failed.
    """

    key: str
    reason: str


class UnmanagedResponse(BaseModel):
    items: list[UnmanagedApplication]
    total: int


class SavepointRecord(BaseModel):
    """Last known savepoint of a job.

    Attributes:
        job_id: Flink job id.
        path: Savepoint location.
        application: Key of the owning application.
    """

    job_id: str
    path: str
    application: str


class SavepointsResponse(BaseModel):
    items: list[SavepointRecord]
    total: int
