"""Access logging for the operator HTTP surface.

Each non-probe request produces a `request started` and a `request completed`
record on the `operator.access` logger. Server errors are logged at WARNING
so they stand out from routine dashboard polling of `/applications`.
"""

import time
from collections.abc import Awaitable, Callable
from logging import INFO, WARNING, getLogger

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from api.middleware.healthz_filter import PROBE_PATHS

logger = getLogger("operator.access")


def _request_path(request: Request) -> str:
    path = request.url.path
    if request.query_params:
        path += f"?{request.query_params}"
    return path


class LoggerMiddleware(BaseHTTPMiddleware):
    """Logs request start and completion with timing.

    The `request` and `response` extras are flattened into top-level JSON keys
    by `foundation.logger.CustomJSONFormatter`.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path in PROBE_PATHS:
            return await call_next(request)

        path = _request_path(request)
        remote = request.client.host if request.client else "unknown"
        logger.info(
            "request started",
            extra={"request": {"path": path, "method": request.method, "remoteAddr": remote}},
        )

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        logger.log(
            WARNING if response.status_code >= 500 else INFO,
            "request completed",
            extra={
                "response": {
                    "path": path,
                    "statuscode": response.status_code,
                    "method": request.method,
                    "since": elapsed,
                    "remoteAddr": remote,
                }
            },
        )
        return response
