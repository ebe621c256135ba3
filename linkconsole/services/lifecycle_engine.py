"""ConnectionLifecycleEngine: drives one connection through its states.

Owns the QR expiry countdown and the confirmation poll for each open
scan flow, writes every transition through to the ConnectionStore and
keeps the local ConnectionRegistry in step.

Example:
    engine = ConnectionLifecycleEngine(store, client)
    state = await engine.create("vendas-whatsapp", owner_id)
    # state.lifecycle_state is awaiting_scan; polling and countdown run
"""

import asyncio
import base64
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from linkconsole.db.models import StoreStatus, utc_now_iso
from linkconsole.errors.domain import DuplicateConnectionError, NotFoundError, ValidationError
from linkconsole.services.connection_registry import ConnectionRegistry
from linkconsole.services.connection_store import ConnectionRecord, ConnectionStore
from linkconsole.services.connection_types import (
    AUTO_CLOSE_DELAY_SECONDS,
    CONFIRM_POLL_INTERVAL_SECONDS,
    QR_TTL_SECONDS,
    ConnectionState,
    ConnectionUpdate,
    LifecycleState,
    Profile,
    QRPayload,
    lifecycle_for_store_status,
    validate_connection_name,
)
from linkconsole.services.errors import RemoteError, StoreError
from linkconsole.services.link_client import LinkServiceClient
from linkconsole.services.notifications import Notifier, linked
from linkconsole.services.scan_session import PollHandle, ScanSession

logger = logging.getLogger(__name__)

_CONFIRMABLE_STATES = frozenset({LifecycleState.awaiting_scan, LifecycleState.pending})


class ConnectionLifecycleEngine:
    """State machine for WhatsApp connections.

    Args:
        store: System of record.
        client: Remote link service client.
        registry: Local cache; a fresh one is created when omitted.
        notifier: Receives user-facing notifications.
        qr_ttl_seconds: Lifetime of a QR payload.
        poll_interval_seconds: Delay between confirmation probes.
        auto_close_delay_seconds: Delay before a confirmed scan flow closes.
        on_scan_activity: Called with True/False whenever a scan or create
            flow opens or the last one closes. The runtime uses it to
            pause periodic reconciliation.
        auto_start_scan: Start countdown and polling when entering
            awaiting_scan. Tests drive both by hand with this off.
        cache_avatars: Download avatars as data URIs after linking.
    """

    def __init__(
        self,
        store: ConnectionStore,
        client: LinkServiceClient,
        registry: ConnectionRegistry | None = None,
        notifier: Notifier | None = None,
        *,
        qr_ttl_seconds: int = QR_TTL_SECONDS,
        poll_interval_seconds: float = CONFIRM_POLL_INTERVAL_SECONDS,
        auto_close_delay_seconds: float = AUTO_CLOSE_DELAY_SECONDS,
        on_scan_activity: Callable[[bool], None] | None = None,
        auto_start_scan: bool = True,
        cache_avatars: bool = True,
    ) -> None:
        self._store = store
        self._client = client
        self.registry = registry if registry is not None else ConnectionRegistry()
        self._notifier = notifier
        self._qr_ttl = qr_ttl_seconds
        self._poll_interval = poll_interval_seconds
        self._auto_close_delay = auto_close_delay_seconds
        self._on_scan_activity = on_scan_activity
        self._auto_start_scan = auto_start_scan
        self._cache_avatars = cache_avatars
        self._sessions: dict[str, ScanSession] = {}
        self._creating: set[str] = set()

    # --- Queries ---

    @property
    def has_active_flow(self) -> bool:
        """True while any create or scan flow is open."""
        return bool(self._sessions or self._creating)

    def get(self, connection_id: str) -> ConnectionState:
        state = self.registry.get(connection_id)
        if state is None:
            raise NotFoundError("Connection", connection_id)
        return state

    def list_connections(self, owner_id: str | None = None) -> list[ConnectionState]:
        return self.registry.list_states(owner_id)

    def scan_session(self, connection_id: str) -> ScanSession | None:
        return self._sessions.get(connection_id)

    # --- Creation ---

    async def create(self, name: str, owner_id: str) -> ConnectionState:
        """Create a provider instance and enter awaiting_scan.

        Raises:
            ConnectionNameError: Invalid name; nothing else is touched.
            DuplicateConnectionError: Name already stored or being created.
            RemoteError: Provider create failed; no record is stored.
            StoreError: The insert failed.
        """
        validate_connection_name(name)
        self._check_name_free(name)

        self._creating.add(name)
        self._signal_activity()
        try:
            created = await self._client.create_instance(name)
            record = self._store.create(
                owner_id,
                name,
                StoreStatus.connecting,
                ConnectionUpdate(
                    configuration={
                        "connection_status": "qr_code",
                        "instance_id": created.instance_id,
                        "instance_name": name,
                    }
                ),
            )
        finally:
            self._creating.discard(name)
            self._signal_activity()

        logger.info("Created connection %s (%s)", name, record.id)
        state = self._state_from_record(record)
        self.registry.put(state)
        self._enter_awaiting_scan(state, created.qr)
        return state

    async def import_existing(self, name: str, owner_id: str) -> ConnectionState:
        """Track an instance that already exists on the provider."""
        validate_connection_name(name)
        self._check_name_free(name)

        profile = await self._client.fetch_profile(name)
        if profile is None:
            raise RemoteError.not_found("profile", name)

        if profile.contact_address:
            update = ConnectionUpdate.with_profile(
                profile,
                connected_at=utc_now_iso(),
                configuration={"connection_status": "connected", "instance_name": name},
            )
            status = StoreStatus.active
        else:
            update = ConnectionUpdate(
                configuration={"connection_status": "disconnected", "instance_name": name}
            )
            status = StoreStatus.inactive

        record = self._store.create(owner_id, name, status, update)
        logger.info("Imported connection %s as %s", name, status.value)
        state = self._state_from_record(record)
        self.registry.put(state)
        return state

    def _check_name_free(self, name: str) -> None:
        if name in self._creating or self._store.get_by_name(name) is not None:
            raise DuplicateConnectionError(name)

    # --- QR flow ---

    async def request_qr(self, connection_id: str) -> ConnectionState:
        """Fetch a fresh QR code and (re)enter awaiting_scan.

        On RemoteError the state is left unchanged.
        """
        state = self.get(connection_id)
        if state.lifecycle_state is LifecycleState.connected:
            raise ValidationError(f"Connection '{state.name}' is already connected")

        qr = await self._client.refresh_qr(state.name)
        self._enter_awaiting_scan(state, qr)
        try:
            self._store.update(
                connection_id,
                ConnectionUpdate(
                    status=StoreStatus.connecting,
                    configuration={"connection_status": "qr_code", "instance_name": state.name},
                ),
            )
        except StoreError as e:
            logger.warning("Could not record QR refresh for %s: %s", state.name, e)
        return state

    def _enter_awaiting_scan(self, state: ConnectionState, qr: QRPayload) -> None:
        previous = self._sessions.pop(state.id, None)
        if previous is not None:
            previous.stop()

        state.lifecycle_state = LifecycleState.awaiting_scan
        state.qr = qr
        state.qr_seconds_remaining = self._qr_ttl
        state.qr_expires_at = datetime.now(UTC) + timedelta(seconds=self._qr_ttl)
        state.profile = None
        state.connected_at = None

        self._sessions[state.id] = ScanSession(connection_id=state.id, name=state.name)
        self._signal_activity()
        logger.info("Connection %s awaiting scan (%ss)", state.name, self._qr_ttl)

        if self._auto_start_scan:
            self.start_countdown(state.id)
            self.start_confirmation_polling(state.id)

    def start_countdown(self, connection_id: str) -> None:
        """Tick the QR countdown once per second until expiry or cancel."""
        session = self._sessions.get(connection_id)
        if session is None or session.handle.cancelled:
            return
        session.handle.attach(asyncio.create_task(self._run_countdown(session)))

    async def _run_countdown(self, session: ScanSession) -> None:
        while not await session.handle.sleep(1.0):
            state = self.registry.get(session.connection_id)
            if state is None:
                session.handle.cancel()
                return
            self.tick_expiry(session.connection_id, 1)

    def tick_expiry(self, connection_id: str, elapsed_seconds: float) -> ConnectionState:
        """Advance the countdown; at zero an unconfirmed scan expires."""
        state = self.get(connection_id)
        if state.lifecycle_state is not LifecycleState.awaiting_scan:
            return state

        state.qr_seconds_remaining = max(0.0, state.qr_seconds_remaining - elapsed_seconds)
        if state.qr_seconds_remaining > 0:
            return state

        state.lifecycle_state = LifecycleState.expired
        state.qr = None
        state.qr_expires_at = None
        session = self._sessions.get(connection_id)
        if session is not None:
            session.expired = True
            session.stop()
        logger.info("QR code for %s expired", state.name)
        return state

    # --- Confirmation ---

    def start_confirmation_polling(
        self,
        connection_id: str,
        on_auto_close: Callable[[str], None] | None = None,
    ) -> PollHandle:
        """Probe for a linked profile now and then every poll interval.

        Returns:
            The session's PollHandle. Calling again while a poll runs
            returns the same handle without starting a second loop.

        Raises:
            NotFoundError: Unknown connection.
            ValidationError: No open, unexpired scan for the connection.
        """
        state = self.get(connection_id)
        session = self._sessions.get(connection_id)
        if (
            session is None
            or session.handle.cancelled
            or state.lifecycle_state is not LifecycleState.awaiting_scan
        ):
            raise ValidationError(f"No active scan for connection '{state.name}'")
        if session.polling:
            return session.handle

        session.polling = True
        session.handle.attach(asyncio.create_task(self._poll_confirmation(session, on_auto_close)))
        return session.handle

    async def _poll_confirmation(
        self, session: ScanSession, on_auto_close: Callable[[str], None] | None
    ) -> None:
        handle = session.handle
        while not handle.cancelled:
            if await self._probe_once(session, on_auto_close):
                return
            if await handle.sleep(self._poll_interval):
                return

    async def _probe_once(
        self, session: ScanSession, on_auto_close: Callable[[str], None] | None
    ) -> bool:
        session.probe_count += 1
        try:
            profile = await self._client.fetch_profile(session.name)
        except RemoteError as e:
            logger.debug("Confirmation probe for %s failed: %s", session.name, e)
            return False

        if session.handle.cancelled:
            return True
        if profile is None or not profile.is_complete:
            return False

        try:
            state = await self.confirm_linked(
                session.connection_id, profile.contact_address, profile
            )
        except StoreError as e:
            logger.error("Failed to record link for %s, retrying: %s", session.name, e)
            return False
        except NotFoundError as e:
            logger.error("Failed to record link for %s: %s", session.name, e)
            return True

        await self._cache_avatar(state)
        self._schedule_auto_close(session, on_auto_close)
        return True

    async def confirm_linked(
        self, connection_id: str, contact: str | None, profile: Profile
    ) -> ConnectionState:
        """Mark a scanned connection as linked.

        Valid from awaiting_scan or pending; a no-op on connected or
        expired connections, so repeating the call is harmless. The store
        is written first: on StoreError the local state and scan flow are
        left as they were.
        """
        state = self.get(connection_id)
        if state.lifecycle_state not in _CONFIRMABLE_STATES:
            logger.debug("Ignoring confirmation for %s in %s", state.name, state.lifecycle_state.value)
            return state

        connected_at = utc_now_iso()
        profile = Profile(
            display_name=profile.display_name,
            contact_address=contact or profile.contact_address,
            avatar_ref=profile.avatar_ref,
        )
        record = self._store.update(
            connection_id,
            ConnectionUpdate.with_profile(
                profile,
                status=StoreStatus.active,
                connected_at=connected_at,
                configuration={"connection_status": "connected", "instance_name": state.name},
            ),
        )
        if record is None:
            self._forget(connection_id)
            raise NotFoundError("Connection", connection_id)

        session = self._sessions.get(connection_id)
        if session is not None:
            session.confirmed = True
            session.handle.cancel()

        state.lifecycle_state = LifecycleState.connected
        state.qr = None
        state.qr_expires_at = None
        state.qr_seconds_remaining = 0
        state.profile = profile
        state.connected_at = connected_at

        logger.info("Connection %s linked to %s", state.name, profile.contact_address)
        if self._notifier is not None:
            self._notifier(linked(profile.display_name or state.name, connection_id))
        return state

    async def _cache_avatar(self, state: ConnectionState) -> None:
        if not self._cache_avatars or state.profile is None or not state.profile.avatar_ref:
            return
        try:
            content, content_type = await self._client.fetch_avatar(state.profile.avatar_ref)
            data_uri = f"data:{content_type};base64,{base64.b64encode(content).decode('ascii')}"
            self._store.update(state.id, ConnectionUpdate(profile_picture_data=data_uri))
        except (RemoteError, StoreError) as e:
            logger.warning("Could not cache avatar for %s: %s", state.name, e)
            return
        state.profile_picture_data = data_uri

    def _schedule_auto_close(
        self, session: ScanSession, on_auto_close: Callable[[str], None] | None
    ) -> None:
        def _close() -> None:
            session.auto_close = None
            if self._sessions.get(session.connection_id) is session:
                self._close_session(session.connection_id)
            if on_auto_close is not None:
                on_auto_close(session.connection_id)

        loop = asyncio.get_running_loop()
        session.auto_close = loop.call_later(self._auto_close_delay, _close)

    # --- Scan dialog ---

    def request_close(self, connection_id: str) -> bool:
        """Close a scan flow; refused (False) until the scan is confirmed."""
        session = self._sessions.get(connection_id)
        if session is None:
            return True
        if not session.confirmed:
            return False
        self._close_session(connection_id)
        return True

    def cancel_scan(self, connection_id: str) -> ConnectionState:
        """Abandon a scan flow; the connection falls back to pending."""
        state = self.get(connection_id)
        self._close_session(connection_id)
        if state.lifecycle_state in (LifecycleState.awaiting_scan, LifecycleState.expired):
            state.lifecycle_state = LifecycleState.pending
            state.qr = None
            state.qr_expires_at = None
            state.qr_seconds_remaining = 0
        return state

    def _close_session(self, connection_id: str) -> None:
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            session.stop()
            self._signal_activity()

    def _signal_activity(self) -> None:
        if self._on_scan_activity is not None:
            self._on_scan_activity(self.has_active_flow)

    # --- Disconnect / delete ---

    async def disconnect(self, connection_id: str) -> ConnectionState:
        """Log the device out; remote failure never blocks the local change."""
        state = self.get(connection_id)
        self._close_session(connection_id)

        try:
            await self._client.disconnect(state.name)
        except RemoteError as e:
            logger.warning("Remote disconnect failed for %s: %s", state.name, e)

        record = self._store.update(connection_id, ConnectionUpdate.cleared_link())
        if record is None:
            self._forget(connection_id)
            raise NotFoundError("Connection", connection_id)

        state.lifecycle_state = LifecycleState.disconnected
        state.qr = None
        state.qr_expires_at = None
        state.qr_seconds_remaining = 0
        state.profile = None
        state.profile_picture_data = None
        state.connected_at = None
        logger.info("Disconnected %s", state.name)
        return state

    async def delete(self, connection_id: str, resync: bool = True) -> None:
        """Remove a connection. The store delete is mandatory, the remote one is not."""
        state = self.get(connection_id)
        self._close_session(connection_id)

        try:
            await self._client.delete_instance(state.name)
        except RemoteError as e:
            logger.warning("Remote delete failed for %s: %s", state.name, e)

        if not self._store.delete(connection_id):
            logger.info("Connection %s was already gone from the store", state.name)
        self.registry.remove(connection_id)
        logger.info("Deleted connection %s", state.name)

        if resync:
            try:
                self.reload(owner_id=state.owner_id)
            except StoreError as e:
                logger.warning("Resync after deleting %s failed: %s", state.name, e)

    def _forget(self, connection_id: str) -> None:
        self._close_session(connection_id)
        self.registry.remove(connection_id)

    # --- Cache maintenance ---

    def reload(self, owner_id: str | None = None) -> list[ConnectionState]:
        """Rebuild the local cache from the store, keeping live scan flows."""
        records = self._store.list_connections(owner_id=owner_id)
        fresh: list[ConnectionState] = []
        live_ids = set()
        for record in records:
            live_ids.add(record.id)
            existing = self.registry.get(record.id)
            if existing is not None and record.id in self._sessions:
                fresh.append(existing)
            else:
                fresh.append(self._state_from_record(record))

        for connection_id in list(self._sessions):
            state = self.registry.get(connection_id)
            in_scope = state is None or owner_id is None or state.owner_id == owner_id
            if in_scope and connection_id not in live_ids:
                self._close_session(connection_id)

        self.registry.replace(fresh, owner_id=owner_id)
        return self.registry.list_states(owner_id)

    def refresh_connection(self, connection_id: str) -> ConnectionState | None:
        """Re-read one record; drops it locally if the store no longer has it."""
        record = self._store.get(connection_id)
        if record is None:
            self._forget(connection_id)
            return None
        if connection_id in self._sessions and connection_id in self.registry:
            return self.registry.get(connection_id)
        state = self._state_from_record(record)
        self.registry.put(state)
        return state

    def apply_remote_state(self, connection_id: str, new_state: LifecycleState) -> None:
        """Scheduler update callback. Unknown (deleted) ids are ignored."""
        state = self.registry.get(connection_id)
        if state is None:
            logger.debug("Ignoring status update for unknown connection %s", connection_id)
            return

        if new_state is not LifecycleState.awaiting_scan:
            self._close_session(connection_id)
            state.qr = None
            state.qr_expires_at = None
            state.qr_seconds_remaining = 0
        if new_state is LifecycleState.disconnected:
            state.profile = None
            state.profile_picture_data = None
            state.connected_at = None
        state.lifecycle_state = new_state

    @staticmethod
    def _state_from_record(record: ConnectionRecord) -> ConnectionState:
        lifecycle_state = lifecycle_for_store_status(record.status)
        connected = lifecycle_state is LifecycleState.connected
        return ConnectionState(
            id=record.id,
            name=record.name,
            owner_id=record.owner_id,
            lifecycle_state=lifecycle_state,
            profile=record.profile if connected else None,
            profile_picture_data=record.profile_picture_data if connected else None,
            connected_at=record.connected_at if connected else None,
            created_at=record.created_at,
        )

    # --- Teardown ---

    async def shutdown(self) -> None:
        """Cancel every scan flow and wait for its tasks to finish."""
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session.stop()
        for session in sessions:
            await session.handle.wait_closed()
        self._signal_activity()
