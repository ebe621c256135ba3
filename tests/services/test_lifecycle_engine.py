"""Tests for ConnectionLifecycleEngine.

Most tests build the engine with ``auto_start_scan=False`` and drive the
countdown and confirmation poll by hand; a few run the real timers with
short intervals.
"""

import asyncio

import pytest

from linkconsole.db.models import StoreStatus
from linkconsole.errors.domain import (
    ConnectionNameError,
    DuplicateConnectionError,
    NameRule,
    NotFoundError,
    ValidationError,
)
from linkconsole.services.connection_types import ConnectionUpdate, LifecycleState, Profile
from linkconsole.services.errors import RemoteError, StoreError
from linkconsole.services.lifecycle_engine import ConnectionLifecycleEngine
from linkconsole.services.notifications import NotificationCenter
from tests.helpers import COMPLETE_PROFILE, PARTIAL_PROFILE

OWNER = "owner-1"


@pytest.fixture
def notifications():
    return NotificationCenter()


@pytest.fixture
def activity():
    return []


@pytest.fixture
async def engine(store, link_service, notifications, activity):
    engine = ConnectionLifecycleEngine(
        store,
        link_service,
        notifier=notifications,
        poll_interval_seconds=0.01,
        auto_close_delay_seconds=0.01,
        on_scan_activity=activity.append,
        auto_start_scan=False,
    )
    yield engine
    await engine.shutdown()


async def _wait_for(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestCreate:
    """Tests for create()."""

    @pytest.mark.asyncio
    async def test_valid_name_enters_awaiting_scan(self, engine, store, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)

        assert state.lifecycle_state is LifecycleState.awaiting_scan
        assert state.qr == link_service.qr
        assert state.qr_seconds_remaining == 60
        assert state.qr_expires_at is not None
        record = store.get(state.id)
        assert record.status == StoreStatus.connecting.value
        assert record.configuration["instance_id"] == "inst-vendas-whatsapp"
        assert engine.get(state.id) is state

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "name, rule",
        [
            ("ab", NameRule.too_short),
            ("my name", NameRule.whitespace),
            ("x" * 31, NameRule.too_long),
            ("na$me", NameRule.invalid_character),
            ("", NameRule.empty),
        ],
    )
    async def test_invalid_name_rejected_before_any_call(
        self, engine, store, link_service, name, rule
    ):
        with pytest.raises(ConnectionNameError) as exc_info:
            await engine.create(name, OWNER)
        assert exc_info.value.rule is rule
        assert link_service.calls == []
        assert store.list_connections() == []

    @pytest.mark.asyncio
    async def test_remote_failure_leaves_no_record(self, engine, store, link_service):
        link_service.configure_failure("create")
        with pytest.raises(RemoteError):
            await engine.create("vendas-whatsapp", OWNER)
        assert store.list_connections() == []
        assert engine.list_connections() == []
        assert not engine.has_active_flow

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, engine, link_service):
        await engine.create("vendas-whatsapp", OWNER)
        with pytest.raises(DuplicateConnectionError):
            await engine.create("vendas-whatsapp", "owner-2")
        assert link_service.call_count("create") == 1

    @pytest.mark.asyncio
    async def test_store_failure_surfaces(self, engine, store, monkeypatch):
        def _fail(*args, **kwargs):
            raise StoreError.write("create")

        monkeypatch.setattr(store, "create", _fail)
        with pytest.raises(StoreError):
            await engine.create("vendas-whatsapp", OWNER)
        assert engine.list_connections() == []

    @pytest.mark.asyncio
    async def test_scan_activity_reported(self, engine, activity):
        state = await engine.create("vendas-whatsapp", OWNER)
        assert activity[0] is True
        assert activity[-1] is True
        engine.cancel_scan(state.id)
        assert activity[-1] is False


class TestImportExisting:

    @pytest.mark.asyncio
    async def test_linked_instance_starts_connected(self, engine, store, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)
        assert state.lifecycle_state is LifecycleState.connected
        assert state.profile == COMPLETE_PROFILE
        assert state.connected_at is not None
        assert store.get(state.id).status == "active"

    @pytest.mark.asyncio
    async def test_unlinked_instance_starts_disconnected(self, engine, store, link_service):
        link_service.queue_profiles("suporte", Profile(display_name="Suporte"))
        state = await engine.import_existing("suporte", OWNER)
        assert state.lifecycle_state is LifecycleState.disconnected
        assert state.profile is None
        assert store.get(state.id).status == "inactive"

    @pytest.mark.asyncio
    async def test_unknown_instance_raises_not_found(self, engine, store):
        with pytest.raises(RemoteError) as exc_info:
            await engine.import_existing("suporte", OWNER)
        assert exc_info.value.code == "E-3004"
        assert store.list_connections() == []


class TestExpiry:
    """Tests for tick_expiry() and the expired sub-state."""

    @pytest.mark.asyncio
    async def test_countdown_decrements(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.tick_expiry(state.id, 1)
        engine.tick_expiry(state.id, 1)
        assert state.qr_seconds_remaining == 58
        assert state.lifecycle_state is LifecycleState.awaiting_scan

    @pytest.mark.asyncio
    async def test_fractional_ticks_accumulate(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.tick_expiry(state.id, 0.5)
        assert state.to_dict()["qr_seconds_remaining"] == 60

        for _ in range(119):
            engine.tick_expiry(state.id, 0.5)

        assert state.lifecycle_state is LifecycleState.expired
        assert engine.scan_session(state.id).handle.cancelled

    @pytest.mark.asyncio
    async def test_expires_at_zero_and_stops_polling(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        handle = engine.start_confirmation_polling(state.id)
        await _wait_for(lambda: link_service.call_count("profile") >= 2)

        engine.tick_expiry(state.id, 60)

        assert state.lifecycle_state is LifecycleState.expired
        assert state.qr is None
        assert handle.cancelled
        await handle.wait_closed()
        probes = link_service.call_count("profile")
        await asyncio.sleep(0.05)
        assert link_service.call_count("profile") == probes

    @pytest.mark.asyncio
    async def test_tick_ignored_outside_awaiting_scan(self, engine, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)
        engine.tick_expiry(state.id, 120)
        assert state.lifecycle_state is LifecycleState.connected

    @pytest.mark.asyncio
    async def test_request_qr_after_expiry_restarts_countdown(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.tick_expiry(state.id, 61)
        assert state.lifecycle_state is LifecycleState.expired

        await engine.request_qr(state.id)

        assert state.lifecycle_state is LifecycleState.awaiting_scan
        assert state.qr_seconds_remaining == 60
        assert state.qr == link_service.qr
        assert engine.start_confirmation_polling(state.id) is not None

    @pytest.mark.asyncio
    async def test_real_countdown_expires(self, store, link_service):
        engine = ConnectionLifecycleEngine(
            store, link_service, qr_ttl_seconds=1, poll_interval_seconds=0.01
        )
        try:
            state = await engine.create("vendas-whatsapp", OWNER)
            await _wait_for(lambda: state.lifecycle_state is LifecycleState.expired, timeout=3)
            probes = link_service.call_count("profile")
            await asyncio.sleep(0.05)
            assert link_service.call_count("profile") == probes
        finally:
            await engine.shutdown()


class TestRequestQr:

    @pytest.mark.asyncio
    async def test_failure_leaves_state_unchanged(self, engine, store, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.cancel_scan(state.id)
        link_service.configure_failure("qr")

        with pytest.raises(RemoteError):
            await engine.request_qr(state.id)

        assert state.lifecycle_state is LifecycleState.pending
        assert state.qr is None

    @pytest.mark.asyncio
    async def test_connected_connection_refused(self, engine, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)
        with pytest.raises(ValidationError):
            await engine.request_qr(state.id)
        assert link_service.call_count("qr") == 0

    @pytest.mark.asyncio
    async def test_unknown_connection(self, engine):
        with pytest.raises(NotFoundError):
            await engine.request_qr("missing")


class TestConfirmationPolling:
    """Tests for the confirmation poll sub-protocol."""

    @pytest.mark.asyncio
    async def test_partial_profile_then_complete(self, engine, store, link_service):
        """Scenario: partial profile keeps awaiting_scan; complete profile links."""
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", PARTIAL_PROFILE, PARTIAL_PROFILE, COMPLETE_PROFILE)

        handle = engine.start_confirmation_polling(state.id)
        await handle.wait_closed()

        assert link_service.call_count("profile", "vendas-whatsapp") == 3
        assert state.lifecycle_state is LifecycleState.connected
        assert state.profile == COMPLETE_PROFILE
        assert state.qr is None
        assert handle.cancelled
        record = store.get(state.id)
        assert record.status == "active"
        assert record.contact == COMPLETE_PROFILE.contact_address
        assert record.connected_at == state.connected_at

    @pytest.mark.asyncio
    async def test_partial_profile_never_confirms(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", PARTIAL_PROFILE)

        engine.start_confirmation_polling(state.id)
        await _wait_for(lambda: link_service.call_count("profile") >= 3)

        assert state.lifecycle_state is LifecycleState.awaiting_scan

    @pytest.mark.asyncio
    async def test_probe_errors_keep_polling(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles(
            "vendas-whatsapp", RemoteError.unreachable("profile"), COMPLETE_PROFILE
        )
        handle = engine.start_confirmation_polling(state.id)
        await handle.wait_closed()
        assert state.lifecycle_state is LifecycleState.connected

    @pytest.mark.asyncio
    async def test_second_start_returns_same_handle(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        first = engine.start_confirmation_polling(state.id)
        assert engine.start_confirmation_polling(state.id) is first

    @pytest.mark.asyncio
    async def test_polling_requires_open_scan(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.tick_expiry(state.id, 60)
        with pytest.raises(ValidationError):
            engine.start_confirmation_polling(state.id)

    @pytest.mark.asyncio
    async def test_confirmation_caches_avatar_and_notifies(
        self, engine, store, link_service, notifications
    ):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", COMPLETE_PROFILE)
        await engine.start_confirmation_polling(state.id).wait_closed()

        assert state.profile_picture_data.startswith("data:image/png;base64,")
        assert store.get(state.id).profile_picture_data == state.profile_picture_data
        assert notifications.recent()[0].title == "WhatsApp connected"

    @pytest.mark.asyncio
    async def test_avatar_failure_is_not_fatal(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", COMPLETE_PROFILE)
        link_service.configure_failure("avatar")
        await engine.start_confirmation_polling(state.id).wait_closed()
        assert state.lifecycle_state is LifecycleState.connected
        assert state.profile_picture_data is None

    @pytest.mark.asyncio
    async def test_auto_close_after_confirmation(self, engine, link_service, activity):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", COMPLETE_PROFILE)
        closed = []

        engine.start_confirmation_polling(state.id, on_auto_close=closed.append)
        await _wait_for(lambda: closed == [state.id])

        assert engine.scan_session(state.id) is None
        assert activity[-1] is False

    @pytest.mark.asyncio
    async def test_store_failure_keeps_polling(self, engine, store, link_service, monkeypatch):
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.queue_profiles("vendas-whatsapp", COMPLETE_PROFILE)
        original_update = store.update
        failures = []

        def _fail_once(*args, **kwargs):
            if not failures:
                failures.append(True)
                raise StoreError.write("update")
            return original_update(*args, **kwargs)

        monkeypatch.setattr(store, "update", _fail_once)
        closed = []

        handle = engine.start_confirmation_polling(state.id, on_auto_close=closed.append)
        await handle.wait_closed()
        await _wait_for(lambda: closed == [state.id])

        assert failures == [True]
        assert link_service.call_count("profile", "vendas-whatsapp") >= 2
        assert state.lifecycle_state is LifecycleState.connected
        assert store.get(state.id).status == "active"
        assert engine.scan_session(state.id) is None
        assert not engine.has_active_flow


class TestConfirmLinked:

    @pytest.mark.asyncio
    async def test_store_failure_leaves_state_untouched(self, engine, store, monkeypatch):
        state = await engine.create("vendas-whatsapp", OWNER)
        handle = engine.start_confirmation_polling(state.id)

        def _fail(*args, **kwargs):
            raise StoreError.write("update")

        monkeypatch.setattr(store, "update", _fail)
        with pytest.raises(StoreError):
            await engine.confirm_linked(state.id, "5511999990000", COMPLETE_PROFILE)

        assert state.lifecycle_state is LifecycleState.awaiting_scan
        assert state.profile is None
        assert state.connected_at is None
        assert store.get(state.id).status == "connecting"
        assert not engine.scan_session(state.id).confirmed
        assert not handle.cancelled
        assert engine.request_close(state.id) is False

    @pytest.mark.asyncio
    async def test_idempotent(self, engine, store):
        state = await engine.create("vendas-whatsapp", OWNER)
        await engine.confirm_linked(state.id, "5511999990000", COMPLETE_PROFILE)
        first = (state.lifecycle_state, state.profile, state.connected_at)
        first_record = store.get(state.id)

        await engine.confirm_linked(state.id, "5511999990000", COMPLETE_PROFILE)

        assert (state.lifecycle_state, state.profile, state.connected_at) == first
        assert store.get(state.id).connected_at == first_record.connected_at

    @pytest.mark.asyncio
    async def test_noop_when_expired(self, engine, store):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.tick_expiry(state.id, 60)
        await engine.confirm_linked(state.id, "5511", COMPLETE_PROFILE)
        assert state.lifecycle_state is LifecycleState.expired
        assert store.get(state.id).status == "connecting"

    @pytest.mark.asyncio
    async def test_valid_from_pending(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        engine.cancel_scan(state.id)
        assert state.lifecycle_state is LifecycleState.pending
        await engine.confirm_linked(state.id, "5511", COMPLETE_PROFILE)
        assert state.lifecycle_state is LifecycleState.connected
        assert state.profile.contact_address == "5511"

    @pytest.mark.asyncio
    async def test_cancels_running_poll(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        handle = engine.start_confirmation_polling(state.id)
        await engine.confirm_linked(state.id, "5511", COMPLETE_PROFILE)
        assert handle.cancelled


class TestScanDialog:

    @pytest.mark.asyncio
    async def test_close_refused_while_unconfirmed(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        assert engine.request_close(state.id) is False
        assert engine.scan_session(state.id) is not None

    @pytest.mark.asyncio
    async def test_close_allowed_after_confirmation(self, engine):
        state = await engine.create("vendas-whatsapp", OWNER)
        await engine.confirm_linked(state.id, "5511", COMPLETE_PROFILE)
        assert engine.request_close(state.id) is True
        assert engine.scan_session(state.id) is None

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, engine, link_service):
        state = await engine.create("vendas-whatsapp", OWNER)
        handle = engine.start_confirmation_polling(state.id)
        await _wait_for(lambda: link_service.call_count("profile") >= 1)

        engine.cancel_scan(state.id)
        await handle.wait_closed()
        probes = link_service.call_count("profile")
        await asyncio.sleep(0.05)

        assert link_service.call_count("profile") == probes
        assert state.lifecycle_state is LifecycleState.pending
        assert state.qr is None


class TestDisconnect:

    @pytest.mark.asyncio
    async def test_clears_profile_in_store_and_locally(self, engine, store, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)

        await engine.disconnect(state.id)

        assert state.lifecycle_state is LifecycleState.disconnected
        assert state.profile is None
        assert state.connected_at is None
        record = store.get(state.id)
        assert record.status == "disconnected"
        assert record.profile is None
        assert link_service.call_count("disconnect", "suporte") == 1

    @pytest.mark.asyncio
    async def test_remote_failure_still_disconnects(self, engine, store, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)
        link_service.configure_failure("disconnect")

        await engine.disconnect(state.id)

        assert state.lifecycle_state is LifecycleState.disconnected
        assert store.get(state.id).status == "disconnected"


class TestDelete:

    @pytest.mark.asyncio
    async def test_remote_failure_still_deletes(self, engine, store, link_service):
        """Scenario: remote delete returns 500, local and store records go anyway."""
        state = await engine.create("vendas-whatsapp", OWNER)
        link_service.configure_failure("delete", RemoteError.http("delete", 500))

        await engine.delete(state.id)

        assert store.get(state.id) is None
        assert engine.list_connections() == []
        assert engine.scan_session(state.id) is None

    @pytest.mark.asyncio
    async def test_store_failure_is_fatal(self, engine, store, monkeypatch):
        state = await engine.create("vendas-whatsapp", OWNER)

        def _fail(connection_id):
            raise StoreError.write("delete")

        monkeypatch.setattr(store, "delete", _fail)
        with pytest.raises(StoreError):
            await engine.delete(state.id)
        assert engine.get(state.id) is state

    @pytest.mark.asyncio
    async def test_resync_picks_up_concurrent_insert(self, engine, store):
        state = await engine.create("vendas-whatsapp", OWNER)
        other = store.create(OWNER, "inserted-elsewhere", StoreStatus.inactive)

        await engine.delete(state.id)

        assert [s.id for s in engine.list_connections()] == [other.id]


class TestCacheMaintenance:

    @pytest.mark.asyncio
    async def test_reload_keeps_live_scan(self, engine, store):
        state = await engine.create("vendas-whatsapp", OWNER)
        store.create(OWNER, "suporte", StoreStatus.active, ConnectionUpdate(contact="5511"))

        engine.reload()

        assert engine.get(state.id) is state
        assert state.lifecycle_state is LifecycleState.awaiting_scan
        names = {s.name for s in engine.list_connections()}
        assert names == {"vendas-whatsapp", "suporte"}

    @pytest.mark.asyncio
    async def test_reload_maps_store_status(self, engine, store):
        record = store.create(OWNER, "suporte", StoreStatus.connecting)
        engine.reload()
        assert engine.get(record.id).lifecycle_state is LifecycleState.pending

    @pytest.mark.asyncio
    async def test_refresh_connection(self, engine, store):
        record = store.create(OWNER, "suporte", StoreStatus.inactive)
        engine.reload()
        store.update(
            record.id,
            ConnectionUpdate.with_profile(COMPLETE_PROFILE, status=StoreStatus.active),
        )

        state = engine.refresh_connection(record.id)

        assert state.lifecycle_state is LifecycleState.connected
        assert state.profile == COMPLETE_PROFILE

    @pytest.mark.asyncio
    async def test_refresh_drops_deleted(self, engine, store):
        record = store.create(OWNER, "suporte", StoreStatus.inactive)
        engine.reload()
        store.delete(record.id)
        assert engine.refresh_connection(record.id) is None
        assert engine.list_connections() == []

    @pytest.mark.asyncio
    async def test_apply_remote_state_ignores_unknown_id(self, engine):
        engine.apply_remote_state("deleted-id", LifecycleState.connected)
        assert engine.list_connections() == []

    @pytest.mark.asyncio
    async def test_apply_remote_disconnect_clears_profile(self, engine, link_service):
        link_service.queue_profiles("suporte", COMPLETE_PROFILE)
        state = await engine.import_existing("suporte", OWNER)
        engine.apply_remote_state(state.id, LifecycleState.disconnected)
        assert state.lifecycle_state is LifecycleState.disconnected
        assert state.profile is None
