"""Middleware to suppress access logging for probe requests.

Kubernetes calls `/healthz` and `/readyz` every few seconds. Logging each call
would drown the operator's own log lines, so the uvicorn access logger is
muted while a probe request is processed.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import Request, Response

PROBE_PATHS = frozenset({"/healthz", "/readyz"})

_access_logger = logging.getLogger("uvicorn.access")


class HealthzFilterMiddleware(BaseHTTPMiddleware):
    """Mute the uvicorn access logger for probe requests.

    Usage:
        ```python
        from api.middleware import HealthzFilterMiddleware

        app.add_middleware(HealthzFilterMiddleware)
        ```
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if request.url.path not in PROBE_PATHS:
            return await call_next(request)

        original_level = _access_logger.level
        _access_logger.setLevel(logging.CRITICAL + 1)
        try:
            return await call_next(request)
        finally:
            _access_logger.setLevel(original_level)
