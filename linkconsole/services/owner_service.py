"""OwnerService: owner profiles and who may manage connections.

An owner unknown to the profile table is registered (active) on first
use; an owner an admin has deactivated is refused.
"""

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from linkconsole.db.models import OwnerProfile, OwnerRole, WhatsAppConnection, utc_now_iso
from linkconsole.errors.domain import InactiveOwnerError, NotFoundError

logger = logging.getLogger(__name__)


def _owner_to_dict(row: OwnerProfile, connection_count: int = 0) -> dict[str, Any]:
    return {
        "owner_id": row.owner_id,
        "display_name": row.display_name,
        "role": row.role,
        "is_active": row.is_active,
        "connection_count": connection_count,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class OwnerService:
    """CRUD over owner profiles.

    Args:
        db: SQLAlchemy session; the caller closes it.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def _get(self, owner_id: str) -> OwnerProfile | None:
        return self._db.query(OwnerProfile).filter_by(owner_id=owner_id).first()

    def ensure_owner(
        self,
        owner_id: str,
        display_name: str | None = None,
        role: OwnerRole = OwnerRole.user,
        is_active: bool = True,
    ) -> OwnerProfile:
        """Return the profile for ``owner_id``, creating it if missing."""
        row = self._get(owner_id)
        if row is not None:
            return row
        now = utc_now_iso()
        row = OwnerProfile(
            owner_id=owner_id,
            display_name=display_name,
            role=role.value,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self._db.add(row)
        self._db.commit()
        logger.info("Registered owner %s (active=%s)", owner_id, is_active)
        return row

    def require_active(self, owner_id: str) -> OwnerProfile:
        """Raise InactiveOwnerError unless the owner may manage connections."""
        row = self.ensure_owner(owner_id)
        if not row.is_active:
            raise InactiveOwnerError(owner_id)
        return row

    def set_active(self, owner_id: str, is_active: bool) -> dict[str, Any]:
        """Activate or deactivate an existing owner."""
        row = self._get(owner_id)
        if row is None:
            raise NotFoundError("Owner", owner_id)
        row.is_active = is_active
        row.updated_at = utc_now_iso()
        self._db.commit()
        logger.info("Owner %s %s", owner_id, "activated" if is_active else "deactivated")
        return _owner_to_dict(row, self._connection_counts().get(owner_id, 0))

    def list_owners(self) -> list[dict[str, Any]]:
        """All owners, newest first, each with its connection count."""
        counts = self._connection_counts()
        rows = self._db.query(OwnerProfile).order_by(OwnerProfile.created_at.desc()).all()
        return [_owner_to_dict(row, counts.get(row.owner_id, 0)) for row in rows]

    def _connection_counts(self) -> dict[str, int]:
        rows = (
            self._db.query(WhatsAppConnection.owner_id, func.count(WhatsAppConnection.id))
            .group_by(WhatsAppConnection.owner_id)
            .all()
        )
        return {owner_id: count for owner_id, count in rows}
