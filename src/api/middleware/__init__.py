"""Middleware for the operator HTTP surface.

This module provides FastAPI middleware for request handling, logging, and filtering.
"""

from api.middleware.exception_handler import ExceptionHandlerMiddleware
from api.middleware.healthz_filter import HealthzFilterMiddleware
from api.middleware.logger import LoggerMiddleware

__all__ = [
    "ExceptionHandlerMiddleware",
    "HealthzFilterMiddleware",
    "LoggerMiddleware",
]
