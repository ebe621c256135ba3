"""API route exposing recent user-facing notifications."""

from fastapi import APIRouter, Depends, Query

from linkconsole.api.routes.connections import get_runtime
from linkconsole.services.runtime import ConsoleRuntime

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def recent_notifications(
    limit: int = Query(20, ge=1, le=100),
    runtime: ConsoleRuntime = Depends(get_runtime),
):
    """Newest-first notifications raised by scans and reconciliation."""
    return [n.to_dict() for n in runtime.notifications.recent(limit)]
