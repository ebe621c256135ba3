"""Background reconciliation of connection status against the link service.

Runs once after a short initial delay, then on a fixed interval, plus
on demand (check now) and shortly after the console becomes visible
again. At most one run is in flight; probes go out in batches of
``batch_size`` and a failing probe never aborts its batch.

Example:
    scheduler = StatusReconciliationScheduler(
        client, store, registry.tracked, engine.apply_remote_state,
    )
    scheduler.start()
    report = await scheduler.check_now()
"""

import asyncio
import contextlib
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from linkconsole.db.models import utc_now_iso
from linkconsole.services.connection_store import ConnectionStore
from linkconsole.services.connection_types import (
    PROBE_TIMEOUT_SECONDS,
    RECONCILE_BATCH_SIZE,
    ConnectionUpdate,
    LifecycleState,
    ProbeResult,
    ProbeStatus,
    TrackedConnection,
    comparable_state,
    state_for_probe,
    store_status_for,
)
from linkconsole.services.errors import RemoteError, StoreError
from linkconsole.services.link_client import LinkServiceClient
from linkconsole.services.notifications import Notifier, connection_lost, connection_restored

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 30.0
DEFAULT_INITIAL_DELAY_SECONDS = 5.0
DEFAULT_VISIBILITY_DEBOUNCE_SECONDS = 2.0

_PERIODIC_STATES = frozenset({LifecycleState.connected, LifecycleState.awaiting_scan})

StatusUpdateCallback = Callable[[str, LifecycleState], Any]
RestoredCallback = Callable[[str], Any]


class _Outcome(str, Enum):
    unchanged = "unchanged"
    changed = "changed"
    failed = "failed"


@dataclass
class ReconciliationReport:
    """Summary of one reconciliation run (or why it was skipped)."""

    forced: bool = False
    skipped: bool = False
    reason: str | None = None
    checked: int = 0
    changed: int = 0
    failed: int = 0
    batches: int = 0
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "forced": self.forced,
            "skipped": self.skipped,
            "reason": self.reason,
            "checked": self.checked,
            "changed": self.changed,
            "failed": self.failed,
            "batches": self.batches,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class StatusReconciliationScheduler:
    """Periodically re-checks remote status for tracked connections.

    Args:
        client: Link service client used for status probes.
        store: Store receiving status and profile writes.
        connections: Returns the currently tracked connections.
        on_status_update: Called with (connection_id, new_state) after a
            store write recorded a change.
        on_restored: Called with the connection id on a
            disconnected -> connected transition; may be async.
        notifier: Receives lost/restored notifications.
        interval_seconds: Period of the repeating timer.
        initial_delay_seconds: Delay before the first run after start().
        visibility_debounce_seconds: Delay before the run triggered by
            notify_visible().
        batch_size: Probes in flight at once.
        probe_timeout_seconds: Upper bound on one probe.
        enabled: Initial value of the enable flag.
    """

    def __init__(
        self,
        client: LinkServiceClient,
        store: ConnectionStore,
        connections: Callable[[], list[TrackedConnection]],
        on_status_update: StatusUpdateCallback,
        on_restored: RestoredCallback | None = None,
        notifier: Notifier | None = None,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        initial_delay_seconds: float = DEFAULT_INITIAL_DELAY_SECONDS,
        visibility_debounce_seconds: float = DEFAULT_VISIBILITY_DEBOUNCE_SECONDS,
        batch_size: int = RECONCILE_BATCH_SIZE,
        probe_timeout_seconds: float = PROBE_TIMEOUT_SECONDS,
        enabled: bool = True,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._client = client
        self._store = store
        self._connections = connections
        self._on_status_update = on_status_update
        self._on_restored = on_restored
        self._notifier = notifier
        self._interval = interval_seconds
        self._initial_delay = initial_delay_seconds
        self._visibility_debounce = visibility_debounce_seconds
        self._batch_size = batch_size
        self._probe_timeout = probe_timeout_seconds
        self._enabled = enabled

        self._in_flight = False
        self._modal_open = False
        self._last_check_time: datetime | None = None
        self._last_report: ReconciliationReport | None = None
        self._periodic_task: asyncio.Task | None = None
        self._visibility_timer: asyncio.TimerHandle | None = None
        self._visibility_task: asyncio.Task | None = None

    # --- Status ---

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_checking(self) -> bool:
        return self._in_flight

    @property
    def last_check_time(self) -> datetime | None:
        return self._last_check_time

    @property
    def last_report(self) -> ReconciliationReport | None:
        return self._last_report

    @property
    def modal_open(self) -> bool:
        return self._modal_open

    @property
    def running(self) -> bool:
        return self._periodic_task is not None and not self._periodic_task.done()

    @property
    def timer_active(self) -> bool:
        """Whether timer-driven runs may fire right now."""
        return self._enabled and not self._modal_open

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def set_modal_open(self, modal_open: bool) -> None:
        """Suppress timer-driven runs while a scan or create flow is open."""
        if modal_open != self._modal_open:
            logger.debug("Reconciliation timer %s", "paused" if modal_open else "resumed")
        self._modal_open = modal_open

    def status(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "is_checking": self._in_flight,
            "modal_open": self._modal_open,
            "running": self.running,
            "interval_seconds": self._interval,
            "last_check_time": (
                self._last_check_time.isoformat() if self._last_check_time else None
            ),
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }

    # --- Runs ---

    async def check_now(self) -> ReconciliationReport:
        """Manual check: every tracked connection, still gated by the in-flight flag."""
        return await self.run_check(force=True)

    async def run_check(self, force: bool = False) -> ReconciliationReport:
        """Run one reconciliation pass.

        Args:
            force: Probe every tracked connection instead of only the
                connected and awaiting-scan ones.

        Returns:
            A report; ``skipped`` is set when a guard prevented the run.
        """
        if not self._enabled:
            return ReconciliationReport(forced=force, skipped=True, reason="disabled")
        if self._in_flight:
            logger.debug("Reconciliation already in flight, skipping")
            return ReconciliationReport(forced=force, skipped=True, reason="in_flight")
        tracked = list(self._connections())
        if not tracked:
            return ReconciliationReport(forced=force, skipped=True, reason="no_connections")

        self._in_flight = True
        report = ReconciliationReport(forced=force)
        try:
            candidates = (
                tracked if force
                else [c for c in tracked if c.lifecycle_state in _PERIODIC_STATES]
            )
            for start in range(0, len(candidates), self._batch_size):
                batch = candidates[start:start + self._batch_size]
                report.batches += 1
                results = await asyncio.gather(
                    *(self._reconcile_one(c) for c in batch), return_exceptions=True
                )
                for connection, result in zip(batch, results):
                    report.checked += 1
                    if isinstance(result, BaseException):
                        logger.warning(
                            "Reconciliation of %s raised: %s", connection.name, result
                        )
                        report.failed += 1
                    elif result is _Outcome.changed:
                        report.changed += 1
                    elif result is _Outcome.failed:
                        report.failed += 1
        finally:
            self._in_flight = False
            self._last_check_time = datetime.now(UTC)

        report.completed_at = self._last_check_time
        self._last_report = report
        logger.info(
            "Reconciliation %s: %d checked, %d changed, %d failed in %d batches",
            "forced" if force else "periodic",
            report.checked,
            report.changed,
            report.failed,
            report.batches,
        )
        return report

    async def _probe(self, connection: TrackedConnection) -> ProbeResult | None:
        try:
            return await asyncio.wait_for(
                self._client.probe_status(connection.name, timeout=self._probe_timeout),
                timeout=self._probe_timeout,
            )
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.warning("Status probe for %s failed: %s", connection.name, e)
            return None

    async def _reconcile_one(self, connection: TrackedConnection) -> _Outcome:
        probe = await self._probe(connection)
        if probe is None:
            return _Outcome.failed

        previous = comparable_state(connection.lifecycle_state)
        if probe.status is ProbeStatus.indeterminate:
            # Indeterminate is never a state change.
            if probe.profile is not None and previous is LifecycleState.connected:
                self._write(connection, ConnectionUpdate.with_profile(probe.profile))
            return _Outcome.unchanged

        new_state = state_for_probe(probe.status)
        if new_state is previous:
            if probe.profile is not None and new_state is LifecycleState.connected:
                self._write(connection, ConnectionUpdate.with_profile(probe.profile))
            return _Outcome.unchanged

        if new_state is LifecycleState.connected:
            update = ConnectionUpdate(
                status=store_status_for(new_state),
                connected_at=utc_now_iso(),
                configuration={"connection_status": "connected", "instance_name": connection.name},
            )
            if probe.profile is not None:
                update = update.merge(ConnectionUpdate.with_profile(probe.profile))
        else:
            update = ConnectionUpdate.cleared_link(store_status_for(new_state))

        written = self._write(connection, update)
        if written is None:
            return _Outcome.failed
        if not written:
            logger.debug("Connection %s no longer stored, ignoring probe", connection.name)
            return _Outcome.unchanged

        logger.info(
            "Connection %s changed %s -> %s", connection.name, previous.value, new_state.value
        )
        self._on_status_update(connection.id, new_state)
        self._announce(connection, previous, new_state)
        if previous is LifecycleState.disconnected and new_state is LifecycleState.connected:
            await self._restore(connection)
        return _Outcome.changed

    def _write(self, connection: TrackedConnection, update: ConnectionUpdate) -> bool | None:
        """Store write; True if applied, False if the row is gone, None on failure."""
        try:
            return self._store.update(connection.id, update) is not None
        except StoreError as e:
            logger.warning("Status write for %s failed: %s", connection.name, e)
            return None

    def _announce(
        self,
        connection: TrackedConnection,
        previous: LifecycleState,
        new_state: LifecycleState,
    ) -> None:
        if self._notifier is None:
            return
        if previous is LifecycleState.connected and new_state is LifecycleState.disconnected:
            self._notifier(connection_lost(connection.name, connection.id))
        elif previous is LifecycleState.disconnected and new_state is LifecycleState.connected:
            self._notifier(connection_restored(connection.name, connection.id))

    async def _restore(self, connection: TrackedConnection) -> None:
        if self._on_restored is None:
            return
        result = self._on_restored(connection.id)
        if inspect.isawaitable(result):
            await result

    # --- Timers ---

    def start(self) -> None:
        """Schedule the initial-delay run and the repeating timer."""
        if self.running:
            return
        self._periodic_task = asyncio.create_task(self._run_periodic())

    async def stop(self) -> None:
        """Cancel every pending timer and wait for them to unwind."""
        if self._visibility_timer is not None:
            self._visibility_timer.cancel()
            self._visibility_timer = None
        for task in (self._periodic_task, self._visibility_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._periodic_task = None
        self._visibility_task = None

    async def _run_periodic(self) -> None:
        await asyncio.sleep(self._initial_delay)
        while True:
            if self.timer_active:
                await self._run_logged(force=False)
            await asyncio.sleep(self._interval)

    async def _run_logged(self, force: bool) -> None:
        try:
            await self.run_check(force=force)
        except Exception:
            logger.exception("Reconciliation run failed")

    def notify_visible(self) -> None:
        """Console regained visibility: run once after the debounce delay."""
        if self._visibility_timer is not None:
            self._visibility_timer.cancel()
        loop = asyncio.get_running_loop()
        self._visibility_timer = loop.call_later(
            self._visibility_debounce, self._on_visibility_timer
        )

    def _on_visibility_timer(self) -> None:
        self._visibility_timer = None
        if not self.timer_active:
            return
        if self._visibility_task is not None and not self._visibility_task.done():
            return
        self._visibility_task = asyncio.create_task(self._run_logged(force=False))
