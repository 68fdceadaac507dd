"""FastAPI HTTP routes for the operator.

This module defines the operator's HTTP endpoints. They are read-only views
of the controller, which the app lifespan stores on `app.state.controller`.

## Endpoints

- `GET /healthz`: Liveness probe (no dependency checks)
- `GET /readyz`: Readiness probe; 503 until the informer synced and all
  control loops run
- `GET /applications`: Managed applications
- `GET /applications/unmanaged`: Applications left unmanaged after a failed
  image update
- `GET /applications/{namespace}/{name}`: One managed application
- `GET /savepoints`: Savepoint ledger

## Error Handling

Operator exceptions raised from handlers are translated by the
`ExceptionHandlerMiddleware` and the exception handlers in `api.app`.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api import models
from core.models import make_key
from core.services.controller import FlinkApplicationController
from core.state import RegistryEntry

router = APIRouter()


def get_controller(request: Request) -> FlinkApplicationController:
    """Return the controller started by the app lifespan.

    Raises:
        HTTPException(503): If the controller is not running.
    """
    controller = getattr(request.app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Controller is not running")
    return controller


Controller = Annotated[FlinkApplicationController, Depends(get_controller)]


def _summary(entry: RegistryEntry) -> models.ApplicationSummary:
    app = entry.app
    return models.ApplicationSummary(
        key=app.key,
        namespace=app.namespace,
        name=app.name,
        image=entry.config.image,
        savepoint_generation=app.spec.savepoint_generation,
        from_savepoint=app.spec.from_savepoint,
        rest_url=entry.config.rest_url,
    )


@router.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    """Liveness probe endpoint.

    Returns:
        A simple status dict: `{"status": "ok"}`

    Note:
        We intentionally do not check the control loops here: a slow
        Kubernetes API must not get the operator pod restarted.
    """
    return {"status": "ok"}


@router.get("/readyz", response_model=models.ReadinessResponse, tags=["health"])
def readyz(controller: Controller) -> JSONResponse:
    """Readiness probe endpoint.

    Returns:
        200 with `status: ready` once the informer has synced and the
        reconciler and status poller threads are alive; 503 otherwise.
    """
    ready = controller.is_ready()
    body = models.ReadinessResponse(
        status="ready" if ready else "not ready",
        informer_synced=controller.informer.has_synced(),
    )
    return JSONResponse(status_code=200 if ready else 503, content=body.model_dump())


@router.get("/applications", response_model=models.ApplicationsResponse, tags=["applications"])
def list_applications(controller: Controller) -> models.ApplicationsResponse:
    """List the applications currently managed by the operator."""
    items = [_summary(entry) for entry in controller.registry.snapshot()]
    return models.ApplicationsResponse(items=items, total=len(items))


@router.get("/applications/unmanaged", response_model=models.UnmanagedResponse, tags=["applications"])
def list_unmanaged(controller: Controller) -> models.UnmanagedResponse:
    """List applications left unmanaged after a failed image update.

    Such an application is reconciled again once its spec changes or it is
    deleted and recreated.
    """
    marks = controller.registry.unmanaged_snapshot()
    items = [models.UnmanagedApplication(key=key, reason=mark.reason) for key, mark in sorted(marks.items())]
    return models.UnmanagedResponse(items=items, total=len(items))


@router.get(
    "/applications/{namespace}/{name}",
    response_model=models.ApplicationSummary,
    tags=["applications"],
)
def get_application(namespace: str, name: str, controller: Controller) -> models.ApplicationSummary:
    """Return one managed application.

    Raises:
        HTTPException(404): If the application is not managed.
    """
    entry = controller.registry.get(make_key(namespace, name))
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Application {namespace}/{name} is not managed")
    return _summary(entry)


@router.get("/savepoints", response_model=models.SavepointsResponse, tags=["savepoints"])
def list_savepoints(controller: Controller) -> models.SavepointsResponse:
    """List the last known savepoint of every job."""
    items = [
        models.SavepointRecord(job_id=job_id, path=entry.path, application=entry.owner)
        for job_id, entry in sorted(controller.ledger.snapshot().items())
    ]
    return models.SavepointsResponse(items=items, total=len(items))
