"""FastAPI application factory for the operator.

This module provides the `create_app()` function that constructs and
configures the FastAPI application instance. The app serves the operator's
probes, metrics and debugging views, and its lifespan owns the controller:
the control loops start when the server starts and stop when it shuts down.

## App Structure

- **Routes**: All routes from `api.routes` (mounted at root)
- **Middleware**: request logging, healthz filter, exception handler
- **Metrics**: Prometheus instrumentation via prometheus-fastapi-instrumentator
- **Lifespan**: builds the controller (unless one is injected), starts it,
  stops it on shutdown

## Usage

```python
from api.app import create_app

app = create_app()
# Use with uvicorn: uvicorn main:app
```

Tests inject a controller so no cluster is needed:

```python
app = create_app(controller=fake_controller)
with TestClient(app) as client:
    client.get("/applications")
```
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from logging.config import dictConfig

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from api.middleware import (
    ExceptionHandlerMiddleware,
    HealthzFilterMiddleware,
    LoggerMiddleware,
)
from api.middleware.exception_handler import ERROR_STATUS
from api.routes import router
from config import get_settings
from core.services.controller import FlinkApplicationController
from foundation.logger import LOGGING_CONFIG

logger = logging.getLogger("uvicorn.error")


ErrorHandler = Callable[[Request, Exception], Awaitable[JSONResponse]]


def _error_handler(status_code: int, error: str, log_message: str) -> ErrorHandler:
    async def handler(_request: Request, exc: Exception) -> JSONResponse:
        logger.exception(log_message, extra={"error": {"statuscode": status_code, "message": str(exc)}})
        return JSONResponse(status_code=status_code, content={"error": error, "message": str(exc)})

    return handler


def create_app(controller: FlinkApplicationController | None = None) -> FastAPI:
    """Create and configure the FastAPI application instance.

    Args:
        controller: Controller to run. If None, one is built from
            `get_settings()` when the app starts; a failure to load the
            Kubernetes configuration then aborts startup.

    Returns:
        A configured `FastAPI` instance ready to use with uvicorn.
    """
    #             ╭─────────────────────────────────────────────────────────╮
    #             │                        Logging                          │
    #             ╰─────────────────────────────────────────────────────────╯

    # Configure logging with structured JSON formatter
    dictConfig(config=LOGGING_CONFIG)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        running = controller or FlinkApplicationController.from_settings(get_settings())
        app.state.controller = running
        running.start()
        try:
            yield
        finally:
            running.stop()
            app.state.controller = None

    app = FastAPI(
        title="FlinkApplication Operator",
        description=(
            "Kubernetes operator managing Flink application clusters declared as "
            "FlinkApplication resources. Exposes probes, Prometheus metrics and "
            "read-only views of the controller state."
        ),
        version="0.1.0",
        lifespan=lifespan,
        openapi_tags=[
            {
                "name": "health",
                "description": "Liveness and readiness probes for Kubernetes",
            },
            {
                "name": "applications",
                "description": "FlinkApplications known to the controller",
            },
            {
                "name": "savepoints",
                "description": "Savepoints recorded by the controller",
            },
        ],
    )

    #             ╭─────────────────────────────────────────────────────────╮
    #             │                        Middleware                       │
    #             ╰─────────────────────────────────────────────────────────╯

    # Order of middleware matters. First in fires first when request received;
    # last after response generated.

    # Logger middleware - provides structured JSON logging for requests
    app.add_middleware(LoggerMiddleware)

    # Healthz filter - suppresses access logs for probe requests
    app.add_middleware(HealthzFilterMiddleware)

    # Exception handler - catches unhandled exceptions and converts to HTTP
    # responses
    app.add_middleware(ExceptionHandlerMiddleware)

    #             ╭─────────────────────────────────────────────────────────╮
    #             │                   Exception Handlers                     │
    #             ╰─────────────────────────────────────────────────────────╯

    @app.exception_handler(HTTPException)
    async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
        """Handle HTTPException from FastAPI routes."""
        logger.warning("http exception", extra={"error": {"statuscode": exc.status_code}})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "Client Error", "message": str(exc.detail)},
        )

    # Operator errors raised inside routes; the most specific handler wins
    for exc_type, status_code, error, log_message in ERROR_STATUS:
        app.add_exception_handler(exc_type, _error_handler(status_code, error, log_message))

    #             ╭─────────────────────────────────────────────────────────╮
    #             │                        Routers                          │
    #             ╰─────────────────────────────────────────────────────────╯

    app.include_router(router)

    #             ╭─────────────────────────────────────────────────────────╮
    #             │                        Metrics                          │
    #             ╰─────────────────────────────────────────────────────────╯

    # Exposes /metrics with standard HTTP metrics
    Instrumentator().instrument(app=app).expose(app=app)

    return app
