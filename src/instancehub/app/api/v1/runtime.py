"""Runtime environment endpoints."""

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from instancehub.app.api.v1.dependencies import Lifecycle, Reconciler

router = APIRouter(prefix="/runtime", tags=["runtime"])


class ReconcileResponse(BaseModel):
    checked: int
    changed: int
    unchanged: int
    conflicts: int
    transitions: dict[str, str]


@router.get("/status")
async def runtime_status(lifecycle: Lifecycle) -> dict[str, Any]:
    """Daemon reachability, image availability, port range and driver."""
    return await lifecycle.environment_status()


@router.post("/reconcile", response_model=ReconcileResponse)
async def reconcile(reconciler: Reconciler) -> ReconcileResponse:
    """Run one reconcile pass now.

    503 when the daemon is down; no instance is touched in that case.
    """
    result = await reconciler.reconcile()
    return ReconcileResponse(
        checked=result.checked,
        changed=result.changed,
        unchanged=result.unchanged,
        conflicts=result.conflicts,
        transitions=result.transitions,
    )
