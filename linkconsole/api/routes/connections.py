"""API routes for WhatsApp connection management.

Thin HTTP surface over the ConsoleRuntime: the lifecycle engine for
create/scan/disconnect/delete and the reconciliation scheduler for
status checks. Create and import require an active owner.
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from linkconsole.api.responses import domain_error_response, error_response, internal_error
from linkconsole.db.connection import get_db
from linkconsole.errors.domain import DomainError
from linkconsole.services.errors import RemoteError, StoreError
from linkconsole.services.owner_service import OwnerService
from linkconsole.services.runtime import ConsoleRuntime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])

_HANDLED = (DomainError, RemoteError, StoreError)


# --- Pydantic request models ---


class ConnectionRequest(BaseModel):
    """Request body for creating or importing a connection."""

    name: str = Field(..., description="Provider-side instance name")
    owner_id: str = Field(..., min_length=1, description="Owning principal")


class VisibilityRequest(BaseModel):
    """Console visibility change reported by the presentation layer."""

    visible: bool = True


def get_runtime(request: Request) -> ConsoleRuntime:
    return request.app.state.runtime


# --- Status checker (declared before /{connection_id}) ---


@router.get("/status/checker")
def checker_status(runtime: ConsoleRuntime = Depends(get_runtime)):
    """Scheduler flags, last check time and last run report."""
    return runtime.scheduler.status()


@router.post("/status/check")
async def check_now(runtime: ConsoleRuntime = Depends(get_runtime)):
    """Force a reconciliation run over every tracked connection."""
    try:
        report = await runtime.scheduler.check_now()
        return report.to_dict()
    except Exception as e:
        return internal_error(e, "status check")


@router.post("/status/visibility")
async def report_visibility(
    body: VisibilityRequest,
    runtime: ConsoleRuntime = Depends(get_runtime),
):
    """Schedule a debounced check when the console becomes visible."""
    if body.visible:
        runtime.scheduler.notify_visible()
    return {"scheduled": body.visible}


# --- Collection ---


@router.get("")
def list_connections(
    owner_id: str | None = None,
    runtime: ConsoleRuntime = Depends(get_runtime),
):
    """List cached connections newest-first, optionally for one owner."""
    return [state.to_dict() for state in runtime.engine.list_connections(owner_id)]


@router.post("")
async def create_connection(
    body: ConnectionRequest,
    db: Session = Depends(get_db),
    runtime: ConsoleRuntime = Depends(get_runtime),
):
    """Create a provider instance and return it awaiting scan."""
    try:
        OwnerService(db).require_active(body.owner_id)
        state = await runtime.engine.create(body.name, body.owner_id)
        return JSONResponse(status_code=201, content=state.to_dict())
    except _HANDLED as e:
        return domain_error_response(e, "create connection")
    except Exception as e:
        return internal_error(e, "create connection")


@router.post("/import")
async def import_connection(
    body: ConnectionRequest,
    db: Session = Depends(get_db),
    runtime: ConsoleRuntime = Depends(get_runtime),
):
    """Track an instance that already exists on the provider."""
    try:
        OwnerService(db).require_active(body.owner_id)
        state = await runtime.engine.import_existing(body.name, body.owner_id)
        return JSONResponse(status_code=201, content=state.to_dict())
    except _HANDLED as e:
        return domain_error_response(e, "import connection")
    except Exception as e:
        return internal_error(e, "import connection")


# --- Single connection ---


@router.get("/{connection_id}")
def get_connection(connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)):
    """Get one cached connection."""
    try:
        return runtime.engine.get(connection_id).to_dict()
    except _HANDLED as e:
        return domain_error_response(e, "get connection")


@router.post("/{connection_id}/qr")
async def request_qr(connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)):
    """Fetch a fresh QR code and restart the scan flow."""
    try:
        state = await runtime.engine.request_qr(connection_id)
        return state.to_dict()
    except _HANDLED as e:
        return domain_error_response(e, "request qr")
    except Exception as e:
        return internal_error(e, "request qr")


@router.post("/{connection_id}/scan/cancel")
async def cancel_scan(connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)):
    """Abandon the scan flow; always allowed."""
    try:
        return runtime.engine.cancel_scan(connection_id).to_dict()
    except _HANDLED as e:
        return domain_error_response(e, "cancel scan")


@router.post("/{connection_id}/scan/close")
async def close_scan(connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)):
    """Close the scan flow; refused with 409 until the scan is confirmed."""
    try:
        runtime.engine.get(connection_id)
        if not runtime.engine.request_close(connection_id):
            return error_response(
                409,
                "SCAN_UNCONFIRMED",
                "Scan not confirmed yet; cancel the scan to close it",
            )
        return {"closed": True, "connection_id": connection_id}
    except _HANDLED as e:
        return domain_error_response(e, "close scan")


@router.post("/{connection_id}/disconnect")
async def disconnect_connection(
    connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)
):
    """Log the device out; succeeds even if the provider call fails."""
    try:
        state = await runtime.engine.disconnect(connection_id)
        return state.to_dict()
    except _HANDLED as e:
        return domain_error_response(e, "disconnect connection")
    except Exception as e:
        return internal_error(e, "disconnect connection")


@router.delete("/{connection_id}")
async def delete_connection(
    connection_id: str, runtime: ConsoleRuntime = Depends(get_runtime)
):
    """Delete a connection; the store delete is authoritative."""
    try:
        await runtime.engine.delete(connection_id)
        return {"deleted": True, "connection_id": connection_id}
    except _HANDLED as e:
        return domain_error_response(e, "delete connection")
    except Exception as e:
        return internal_error(e, "delete connection")
