"""User-facing notifications (toasts) raised by the engine and scheduler.

The console keeps the most recent notifications in memory so the
presentation layer can poll them; each one is also logged.
"""

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

logger = logging.getLogger(__name__)


class NotificationVariant(str, Enum):
    default = "default"
    destructive = "destructive"


@dataclass(frozen=True)
class Notification:
    """A transient message for the operator."""

    title: str
    description: str
    variant: NotificationVariant = NotificationVariant.default
    connection_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "variant": self.variant.value,
            "connection_id": self.connection_id,
            "created_at": self.created_at.isoformat(),
        }


Notifier = Callable[[Notification], None]


class NotificationCenter:
    """Bounded in-memory feed of notifications.

    Args:
        max_items: Oldest notifications are dropped past this size.
    """

    def __init__(self, max_items: int = 100) -> None:
        self._items: deque[Notification] = deque(maxlen=max_items)

    def __call__(self, notification: Notification) -> None:
        self.publish(notification)

    def publish(self, notification: Notification) -> None:
        log = logger.warning if notification.variant is NotificationVariant.destructive else logger.info
        log("%s: %s", notification.title, notification.description)
        self._items.append(notification)

    def recent(self, limit: int = 20) -> list[Notification]:
        """Newest-first slice of the feed."""
        return list(reversed(self._items))[:limit]

    def clear(self) -> None:
        self._items.clear()


def connection_lost(name: str, connection_id: str | None = None) -> Notification:
    return Notification(
        title="Connection lost",
        description=f"Connection {name} was disconnected.",
        variant=NotificationVariant.destructive,
        connection_id=connection_id,
    )


def connection_restored(name: str, connection_id: str | None = None) -> Notification:
    return Notification(
        title="Reconnected",
        description=f"Connection {name} was restored.",
        connection_id=connection_id,
    )


def linked(profile_name: str, connection_id: str | None = None) -> Notification:
    return Notification(
        title="WhatsApp connected",
        description=f"Successfully connected as {profile_name}.",
        connection_id=connection_id,
    )
