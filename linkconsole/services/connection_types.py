"""Shared types and constants for WhatsApp connection management.

Neutral module with no DB-session or HTTP imports. Used by the link
client, the store, the lifecycle engine and the status scheduler.
"""

import math
import re
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any

from linkconsole.db.models import StoreStatus
from linkconsole.errors.domain import ConnectionNameError, NameRule


# --- Shared Constants ---

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 30
NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

QR_TTL_SECONDS = 60
CONFIRM_POLL_INTERVAL_SECONDS = 3.0
AUTO_CLOSE_DELAY_SECONDS = 2.0

RECONCILE_BATCH_SIZE = 3
PROBE_TIMEOUT_SECONDS = 10.0


class LifecycleState(str, Enum):
    """Local lifecycle of a connection.

    ``expired`` is the sub-state of ``awaiting_scan`` reached when the QR
    countdown elapses without a confirmed link.
    """

    disconnected = "disconnected"
    awaiting_scan = "awaiting_scan"
    expired = "expired"
    connected = "connected"
    pending = "pending"


class ProbeStatus(str, Enum):
    """Classified outcome of a status probe."""

    open = "open"
    closed = "closed"
    indeterminate = "indeterminate"


_STORE_STATUS_FOR_STATE: dict[LifecycleState, StoreStatus] = {
    LifecycleState.connected: StoreStatus.active,
    LifecycleState.disconnected: StoreStatus.disconnected,
    LifecycleState.pending: StoreStatus.connecting,
    LifecycleState.awaiting_scan: StoreStatus.connecting,
    LifecycleState.expired: StoreStatus.connecting,
}

_STATE_FOR_STORE_STATUS: dict[str, LifecycleState] = {
    StoreStatus.active.value: LifecycleState.connected,
    StoreStatus.connecting.value: LifecycleState.pending,
    StoreStatus.inactive.value: LifecycleState.disconnected,
    StoreStatus.disconnected.value: LifecycleState.disconnected,
    StoreStatus.error.value: LifecycleState.disconnected,
}


def store_status_for(state: LifecycleState) -> StoreStatus:
    """Map a lifecycle state to the status column value."""
    return _STORE_STATUS_FOR_STATE[state]


def lifecycle_for_store_status(status: str) -> LifecycleState:
    """Map a stored status back to a lifecycle state.

    A ``connecting`` row read from the store has no live QR payload, so it
    maps to ``pending`` rather than ``awaiting_scan``.
    """
    return _STATE_FOR_STORE_STATUS.get(status, LifecycleState.disconnected)


def comparable_state(state: LifecycleState) -> LifecycleState:
    """Collapse scan states onto ``pending`` for reconciliation comparisons."""
    if state in (LifecycleState.awaiting_scan, LifecycleState.expired):
        return LifecycleState.pending
    return state


def state_for_probe(status: ProbeStatus) -> LifecycleState:
    """Map a probe outcome onto a lifecycle state."""
    if status is ProbeStatus.open:
        return LifecycleState.connected
    if status is ProbeStatus.closed:
        return LifecycleState.disconnected
    return LifecycleState.pending


def validate_connection_name(name: str | None) -> str:
    """Validate a connection name, checking rules in priority order.

    Args:
        name: Raw name as typed by the user.

    Returns:
        The validated name.

    Raises:
        ConnectionNameError: Naming the first violated rule.
    """
    if name is None or not name.strip():
        raise ConnectionNameError(NameRule.empty)
    if any(ch.isspace() for ch in name):
        raise ConnectionNameError(NameRule.whitespace)
    if len(name) < NAME_MIN_LENGTH:
        raise ConnectionNameError(NameRule.too_short, min_length=NAME_MIN_LENGTH)
    if len(name) > NAME_MAX_LENGTH:
        raise ConnectionNameError(NameRule.too_long, max_length=NAME_MAX_LENGTH)
    if not NAME_PATTERN.match(name):
        raise ConnectionNameError(NameRule.invalid_character)
    return name


# --- Value types ---


@dataclass(frozen=True)
class QRPayload:
    """QR code returned by the provider: an image (data URI/base64) and/or raw text."""

    image: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class Profile:
    """Linked WhatsApp profile as reported by the provider."""

    display_name: str | None = None
    contact_address: str | None = None
    avatar_ref: str | None = None

    @property
    def is_complete(self) -> bool:
        """All three fields present; anything less means 'not yet linked'."""
        return bool(self.display_name and self.contact_address and self.avatar_ref)

    @property
    def is_empty(self) -> bool:
        return not (self.display_name or self.contact_address or self.avatar_ref)


@dataclass(frozen=True)
class CreatedInstance:
    """Provider response to an instance create."""

    instance_id: str | None
    qr: QRPayload


@dataclass(frozen=True)
class ProbeResult:
    """Classified status probe, optionally carrying profile fields."""

    status: ProbeStatus
    profile: Profile | None = None


@dataclass
class ConnectionState:
    """Local (cached) view of one connection.

    Attributes:
        id: Store identifier.
        name: Provider-side instance name.
        owner_id: Owning principal.
        lifecycle_state: Current LifecycleState.
        qr: QR payload, only while awaiting_scan.
        qr_expires_at: Wall-clock deadline of the QR payload.
        qr_seconds_remaining: Countdown driven by tick_expiry, rounded up for display.
        profile: Linked profile, only while connected.
        connected_at: Set on entering connected.
        created_at: Record creation timestamp.
    """

    id: str
    name: str
    owner_id: str
    lifecycle_state: LifecycleState
    qr: QRPayload | None = None
    qr_expires_at: datetime | None = None
    qr_seconds_remaining: float = 0
    profile: Profile | None = None
    profile_picture_data: str | None = None
    connected_at: str | None = None
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "state": self.lifecycle_state.value,
            "qr_code": self.qr.image if self.qr else None,
            "qr_code_text": self.qr.text if self.qr else None,
            "qr_expires_at": self.qr_expires_at.isoformat() if self.qr_expires_at else None,
            "qr_seconds_remaining": math.ceil(self.qr_seconds_remaining),
            "profile_name": self.profile.display_name if self.profile else None,
            "contact": self.profile.contact_address if self.profile else None,
            "profile_picture_url": self.profile.avatar_ref if self.profile else None,
            "profile_picture_data": self.profile_picture_data,
            "connected_at": self.connected_at,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class TrackedConnection:
    """Minimal view the scheduler needs of a connection."""

    id: str
    name: str
    lifecycle_state: LifecycleState


class _Unset:
    """Sentinel for ConnectionUpdate fields that should not be written."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class ConnectionUpdate:
    """Partial update for a connection row.

    Every field defaults to UNSET; only fields explicitly set (including
    to None, which clears the column) are written.
    """

    status: StoreStatus | Any = UNSET
    profile_name: str | None | Any = UNSET
    contact: str | None | Any = UNSET
    profile_picture_url: str | None | Any = UNSET
    profile_picture_data: str | None | Any = UNSET
    connected_at: str | None | Any = UNSET
    configuration: dict[str, Any] | None | Any = field(default=UNSET)

    def fields_set(self) -> frozenset[str]:
        """Names of the fields this update writes."""
        return frozenset(f.name for f in fields(self) if getattr(self, f.name) is not UNSET)

    def to_columns(self) -> dict[str, Any]:
        """Column -> value mapping of the fields this update writes."""
        columns: dict[str, Any] = {}
        for name in self.fields_set():
            value = getattr(self, name)
            if isinstance(value, StoreStatus):
                value = value.value
            columns[name] = value
        return columns

    def merge(self, other: "ConnectionUpdate") -> "ConnectionUpdate":
        """Overlay the fields set on ``other`` onto this update."""
        return replace(self, **{name: getattr(other, name) for name in other.fields_set()})

    @classmethod
    def with_profile(cls, profile: Profile, **kwargs: Any) -> "ConnectionUpdate":
        """Write whichever profile fields the provider reported."""
        values: dict[str, Any] = {}
        if profile.display_name:
            values["profile_name"] = profile.display_name
        if profile.contact_address:
            values["contact"] = profile.contact_address
        if profile.avatar_ref:
            values["profile_picture_url"] = profile.avatar_ref
        values.update(kwargs)
        return cls(**values)

    @classmethod
    def cleared_link(cls, status: StoreStatus = StoreStatus.disconnected) -> "ConnectionUpdate":
        """Drop every linked-profile field and mark the row disconnected."""
        return cls(
            status=status,
            profile_name=None,
            contact=None,
            profile_picture_url=None,
            profile_picture_data=None,
            connected_at=None,
            configuration={"connection_status": "disconnected"},
        )
