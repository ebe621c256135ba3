"""In-memory cache of connection state shared by the engine and scheduler.

The store stays the system of record; this registry is the local view
the presentation layer reads. It is only mutated by the lifecycle engine
(directly or through the scheduler's update callback).
"""

from collections.abc import Iterable

from linkconsole.services.connection_types import ConnectionState, TrackedConnection


class ConnectionRegistry:
    def __init__(self) -> None:
        self._states: dict[str, ConnectionState] = {}

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, connection_id: str) -> ConnectionState | None:
        return self._states.get(connection_id)

    def put(self, state: ConnectionState) -> None:
        self._states[state.id] = state

    def remove(self, connection_id: str) -> ConnectionState | None:
        return self._states.pop(connection_id, None)

    def list_states(self, owner_id: str | None = None) -> list[ConnectionState]:
        """Newest-first, optionally filtered by owner."""
        states = [
            s for s in self._states.values()
            if owner_id is None or s.owner_id == owner_id
        ]
        return sorted(states, key=lambda s: s.created_at or "", reverse=True)

    def replace(self, states: Iterable[ConnectionState], owner_id: str | None = None) -> None:
        """Swap the cached states for one owner (or everyone) with ``states``."""
        for connection_id in [
            cid for cid, s in self._states.items()
            if owner_id is None or s.owner_id == owner_id
        ]:
            del self._states[connection_id]
        for state in states:
            self._states[state.id] = state

    def tracked(self) -> list[TrackedConnection]:
        """Snapshot used by the reconciliation scheduler."""
        return [
            TrackedConnection(id=s.id, name=s.name, lifecycle_state=s.lifecycle_state)
            for s in self._states.values()
        ]
