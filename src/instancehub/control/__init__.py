"""Control loops."""

from instancehub.control.reconciler import (
    ReconcileLoop,
    ReconcileResult,
    StatusReconciler,
    map_status,
)

__all__ = ["ReconcileLoop", "ReconcileResult", "StatusReconciler", "map_status"]
