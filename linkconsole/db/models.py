"""SQLAlchemy ORM models for the link console state database.

Defines the connection table that acts as the system of record for
WhatsApp link instances, plus the owner profiles that gate who may
create them. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import Boolean, Index, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


class StoreStatus(str, Enum):
    """Status values persisted in the connections table.

    Lifecycle: connecting -> active -> disconnected
               connecting -> inactive (imported, never linked)
    """

    active = "active"
    inactive = "inactive"
    connecting = "connecting"
    disconnected = "disconnected"
    error = "error"


class OwnerRole(str, Enum):
    """Roles an owner profile may hold."""

    admin = "admin"
    user = "user"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class WhatsAppConnection(Base):
    """A named WhatsApp link instance owned by one principal.

    The ``name`` column is the only key the remote link provider
    understands; ``id`` is local to this store.

    Attributes:
        id: UUID4 text primary key.
        owner_id: Identifier of the owning principal.
        name: Provider-side instance name, unique and immutable.
        type: Connection type (always 'whatsapp' today).
        channel: Delivery channel (always 'whatsapp' today).
        status: StoreStatus value.
        description: Optional free-text note.
        profile_name: Linked WhatsApp display name.
        contact: Linked phone number / contact address.
        profile_picture_url: Avatar reference reported by the provider.
        profile_picture_data: Cached avatar as a base64 data URI.
        connected_at: ISO8601 timestamp of the last successful link.
        configuration_json: TEXT column with provider bookkeeping.
        created_at: ISO8601 UTC timestamp.
        updated_at: ISO8601 UTC timestamp, service-managed.
    """

    __tablename__ = "connections"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    type: Mapped[str] = mapped_column(Text, nullable=False, default="whatsapp")
    channel: Mapped[str | None] = mapped_column(Text, nullable=True, default="whatsapp")
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=StoreStatus.inactive.value
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    contact: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_picture_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_picture_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    connected_at: Mapped[str | None] = mapped_column(Text, nullable=True)
    configuration_json: Mapped[str | None] = mapped_column(
        Text, nullable=True, default="{}"
    )
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    __table_args__ = (
        Index("idx_connections_owner", "owner_id"),
        Index("idx_connections_created", "created_at"),
    )

    @property
    def configuration(self) -> dict[str, Any]:
        """Deserialize configuration_json, returning {} when absent or corrupt."""
        if not self.configuration_json:
            return {}
        try:
            result = json.loads(self.configuration_json)
        except (json.JSONDecodeError, TypeError):
            return {}
        return result if isinstance(result, dict) else {}

    @configuration.setter
    def configuration(self, value: dict[str, Any] | None) -> None:
        """Serialize a dict into configuration_json."""
        self.configuration_json = json.dumps(value or {}, sort_keys=True)

    def __repr__(self) -> str:
        return (
            f"<WhatsAppConnection(name={self.name!r}, "
            f"owner={self.owner_id!r}, status={self.status!r})>"
        )


class OwnerProfile(Base):
    """Console user allowed to own connections.

    Attributes:
        owner_id: External principal identifier (unique).
        display_name: Name shown in the admin table.
        role: OwnerRole value.
        is_active: Inactive owners cannot create or import connections.
    """

    __tablename__ = "owner_profiles"

    id: Mapped[str] = mapped_column(Text, primary_key=True, default=generate_uuid)
    owner_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default=OwnerRole.user.value)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=utc_now_iso)

    def __repr__(self) -> str:
        return f"<OwnerProfile(owner_id={self.owner_id!r}, active={self.is_active!r})>"
