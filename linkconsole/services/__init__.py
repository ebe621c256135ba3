"""Service layer for the link console.

Connection lifecycle, status reconciliation, persistence and the
remote link service client.
"""

from linkconsole.services.connection_store import ConnectionRecord, ConnectionStore
from linkconsole.services.errors import RemoteError, StoreError
from linkconsole.services.lifecycle_engine import ConnectionLifecycleEngine
from linkconsole.services.link_client import LinkServiceClient
from linkconsole.services.status_scheduler import (
    ReconciliationReport,
    StatusReconciliationScheduler,
)

__all__ = [
    "ConnectionLifecycleEngine",
    "StatusReconciliationScheduler",
    "ReconciliationReport",
    "ConnectionStore",
    "ConnectionRecord",
    "LinkServiceClient",
    "RemoteError",
    "StoreError",
]
