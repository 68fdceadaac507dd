"""Core domain code of the operator.

This package provides the domain layer shared by the control loops and the
HTTP surface:
- Exception hierarchy for error handling
- Domain models of FlinkApplication resources
- Effective configuration, shared state, work queue and ingress publication
- Control loops in core/services/

Only exceptions and models are re-exported here; the other modules depend
on `clients` and are imported directly.
"""

from .exceptions import (
    ConfigurationError,
    DeployError,
    OperatorError,
    OperatorTimeoutError,
    SavepointError,
    UpstreamError,
)
from .models import FlinkApplication, FlinkApplicationSpec, FlinkApplicationStatus, JobStatus

__all__ = [
    "ConfigurationError",
    "DeployError",
    "FlinkApplication",
    "FlinkApplicationSpec",
    "FlinkApplicationStatus",
    "JobStatus",
    "OperatorError",
    "OperatorTimeoutError",
    "SavepointError",
    "UpstreamError",
]
