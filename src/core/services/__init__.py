"""Control loops of the operator.

This module provides the reconciler, the status poller and the controller
that runs them on their own threads.
"""

from .controller import DeletionHandler, FlinkApplicationController
from .reconciler import Reconciler
from .status_poller import StatusPoller

__all__ = [
    "DeletionHandler",
    "FlinkApplicationController",
    "Reconciler",
    "StatusPoller",
]
