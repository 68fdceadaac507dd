"""HTTP surface of the operator.

This package contains all API-specific code:
- Probe, metrics and state-inspection routes
- FastAPI application factory (owns the controller lifecycle)
- Pydantic response models
"""

from api import models
from api.app import create_app

__all__ = ["create_app", "models"]
