"""Database module for link console persistence."""

from linkconsole.db.connection import (
    SessionLocal,
    engine,
    get_db,
    init_db,
)
from linkconsole.db.models import (
    Base,
    OwnerProfile,
    OwnerRole,
    StoreStatus,
    WhatsAppConnection,
)

__all__ = [
    # Models
    "Base",
    "WhatsAppConnection",
    "OwnerProfile",
    # Enums
    "StoreStatus",
    "OwnerRole",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "init_db",
]
