"""Exception handler middleware for the operator HTTP surface.

This middleware catches exceptions that escape route handlers and converts
them into JSON error responses with a status code matching the error type.
"""

import logging
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from core.exceptions import ConfigurationError, OperatorError, OperatorTimeoutError, UpstreamError

logger = logging.getLogger("uvicorn.error")

# Most specific first: OperatorError is the base of the first two
ERROR_STATUS: tuple[tuple[type[Exception], int, str, str], ...] = (
    (ConfigurationError, 400, "Bad Request", "bad request"),
    (OperatorTimeoutError, 504, "Gateway Timeout", "operator timeout"),
    (UpstreamError, 502, "Bad Gateway", "upstream error"),
    (OperatorError, 500, "Internal Server Error", "operator error"),
)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "message": message})


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Middleware to handle exceptions and convert them to HTTP responses.

    Mapping:
        - ConfigurationError → 400
        - OperatorTimeoutError → 504
        - UpstreamError → 502
        - OperatorError (base) → 500
        - HTTPException → its own status code
        - Anything else → 500 with a generic message

    Usage:
        ```python
        from api.middleware import ExceptionHandlerMiddleware

        app.add_middleware(ExceptionHandlerMiddleware)
        ```
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process request and handle any exceptions.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware or route handler in the chain.

        Returns:
            The HTTP response, or an error response if an exception occurred.
        """
        try:
            return await call_next(request)

        except (ConfigurationError, OperatorTimeoutError, UpstreamError, OperatorError) as e:
            for exc_type, status_code, error, log_message in ERROR_STATUS:
                if isinstance(e, exc_type):
                    break
            logger.exception(log_message, extra={"error": {"statuscode": status_code, "message": str(e)}})
            return _error_response(status_code, error, str(e))

        except HTTPException as http_exception:
            logger.warning("http exception", extra={"error": {"statuscode": http_exception.status_code}})
            return _error_response(http_exception.status_code, "Client Error", str(http_exception.detail))

        except Exception as e:
            # Anything unexpected becomes a generic 500
            logger.exception("internal error", extra={"error": {"statuscode": 500, "message": str(e)}})
            return _error_response(500, "Internal Server Error", "An unexpected error occurred.")
