"""Job handlers for Migrate Executor"""

from .enablement import EnablementHandler
from .reconciliation import ReconciliationHandler, ReconciliationLoop
from .lifecycle import LifecycleHandler

__all__ = [
    'EnablementHandler',
    'ReconciliationHandler',
    'ReconciliationLoop',
    'LifecycleHandler',
]
