"""ConnectionStore: persistence for WhatsApp connection records.

The store is the system of record. Each operation opens its own session
from the injected factory, commits, and converts SQLAlchemy failures to
StoreError so callers decide whether a failure is fatal (create/delete)
or only logged (status sync). Rows never leave the session; callers get
ConnectionRecord snapshots instead.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from linkconsole.db.models import StoreStatus, WhatsAppConnection, generate_uuid, utc_now_iso
from linkconsole.services.connection_types import ConnectionUpdate, Profile
from linkconsole.services.errors import StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectionRecord:
    """Snapshot of one connections row."""

    id: str
    owner_id: str
    name: str
    status: str
    profile_name: str | None = None
    contact: str | None = None
    profile_picture_url: str | None = None
    profile_picture_data: str | None = None
    connected_at: str | None = None
    configuration: dict[str, Any] = field(default_factory=dict)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def profile(self) -> Profile | None:
        profile = Profile(
            display_name=self.profile_name,
            contact_address=self.contact,
            avatar_ref=self.profile_picture_url,
        )
        return None if profile.is_empty else profile

    @classmethod
    def from_row(cls, row: WhatsAppConnection) -> "ConnectionRecord":
        return cls(
            id=row.id,
            owner_id=row.owner_id,
            name=row.name,
            status=row.status,
            profile_name=row.profile_name,
            contact=row.contact,
            profile_picture_url=row.profile_picture_url,
            profile_picture_data=row.profile_picture_data,
            connected_at=row.connected_at,
            configuration=row.configuration,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class ConnectionStore:
    """CRUD over the connections table.

    Args:
        session_factory: Zero-argument callable returning a new Session.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Store %s failed: %s", operation, e)
            if operation == "read":
                raise StoreError.read() from e
            raise StoreError.write(operation) from e
        finally:
            db.close()

    def create(
        self,
        owner_id: str,
        name: str,
        status: StoreStatus,
        update: ConnectionUpdate | None = None,
    ) -> ConnectionRecord:
        """Insert a new connection row.

        Args:
            owner_id: Owning principal.
            name: Provider-side instance name.
            status: Initial status column value.
            update: Optional extra fields (profile, configuration).

        Returns:
            Snapshot of the inserted row.

        Raises:
            StoreError: On any persistence failure (including a duplicate name).
        """
        now = utc_now_iso()
        with self._session("create") as db:
            row = WhatsAppConnection(
                id=generate_uuid(),
                owner_id=owner_id,
                name=name,
                type="whatsapp",
                channel="whatsapp",
                status=status.value,
                configuration_json="{}",
                created_at=now,
                updated_at=now,
            )
            if update is not None:
                for column, value in update.to_columns().items():
                    setattr(row, column, value)
            db.add(row)
            db.flush()
            record = ConnectionRecord.from_row(row)
        return record

    def get(self, connection_id: str) -> ConnectionRecord | None:
        """Read one row by id."""
        with self._session("read") as db:
            row = db.get(WhatsAppConnection, connection_id)
            return ConnectionRecord.from_row(row) if row is not None else None

    def get_by_name(self, name: str) -> ConnectionRecord | None:
        """Read one row by provider-side name."""
        with self._session("read") as db:
            row = db.query(WhatsAppConnection).filter_by(name=name).first()
            return ConnectionRecord.from_row(row) if row is not None else None

    def list_connections(
        self, owner_id: str | None = None, connection_type: str | None = "whatsapp"
    ) -> list[ConnectionRecord]:
        """List rows newest-first, optionally filtered by owner and type."""
        with self._session("read") as db:
            query = db.query(WhatsAppConnection)
            if owner_id is not None:
                query = query.filter(WhatsAppConnection.owner_id == owner_id)
            if connection_type is not None:
                query = query.filter(WhatsAppConnection.type == connection_type)
            rows = query.order_by(
                WhatsAppConnection.created_at.desc(), WhatsAppConnection.id
            ).all()
            return [ConnectionRecord.from_row(row) for row in rows]

    def count_by_owner(self) -> dict[str, int]:
        """Number of connections per owner id."""
        with self._session("read") as db:
            rows = (
                db.query(WhatsAppConnection.owner_id, func.count(WhatsAppConnection.id))
                .group_by(WhatsAppConnection.owner_id)
                .all()
            )
        return {owner_id: count for owner_id, count in rows}

    def update(self, connection_id: str, update: ConnectionUpdate) -> ConnectionRecord | None:
        """Apply a partial update.

        Returns:
            Snapshot of the updated row, or None if the row no longer exists.

        Raises:
            StoreError: On persistence failure.
        """
        with self._session("update") as db:
            row = db.get(WhatsAppConnection, connection_id)
            if row is None:
                return None
            for column, value in update.to_columns().items():
                setattr(row, column, value)
            row.updated_at = utc_now_iso()
            db.flush()
            record = ConnectionRecord.from_row(row)
        return record

    def delete(self, connection_id: str) -> bool:
        """Delete a row by id.

        Returns:
            True if deleted, False if not found.

        Raises:
            StoreError: On persistence failure.
        """
        with self._session("delete") as db:
            row = db.get(WhatsAppConnection, connection_id)
            if row is None:
                return False
            db.delete(row)
        return True
