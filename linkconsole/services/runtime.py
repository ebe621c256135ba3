"""ConsoleRuntime: one engine, one scheduler and the wiring between them.

The engine reports scan/create activity and the runtime pauses the
scheduler's timer while any flow is open. Scheduler updates flow back
into the engine's registry through ``apply_remote_state``; restored
connections are re-read from the store.
"""

import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from linkconsole.cli.config import ConsoleConfig
from linkconsole.services.connection_registry import ConnectionRegistry
from linkconsole.services.connection_store import ConnectionStore
from linkconsole.services.errors import StoreError
from linkconsole.services.lifecycle_engine import ConnectionLifecycleEngine
from linkconsole.services.link_client import LinkServiceClient
from linkconsole.services.notifications import NotificationCenter
from linkconsole.services.status_scheduler import StatusReconciliationScheduler

logger = logging.getLogger(__name__)


class ConsoleRuntime:
    """Owns the long-lived services behind the API and CLI.

    Args:
        config: Loaded console configuration.
        session_factory: Zero-argument callable returning a Session.
        client: Link client; built from ``config.link_service`` when omitted.
        auto_start_scan: Forwarded to the lifecycle engine.
    """

    def __init__(
        self,
        config: ConsoleConfig,
        session_factory: Callable[[], Session],
        client: LinkServiceClient | None = None,
        auto_start_scan: bool = True,
    ) -> None:
        self.config = config
        self.session_factory = session_factory
        self.client = client or LinkServiceClient(
            base_url=config.link_service.base_url,
            paths=config.link_service.paths.model_dump(),
            api_key=config.link_service.api_key,
            timeout=config.link_service.timeout_seconds,
        )
        self.store = ConnectionStore(session_factory)
        self.registry = ConnectionRegistry()
        self.notifications = NotificationCenter()

        sched = config.scheduler
        self.scheduler = StatusReconciliationScheduler(
            self.client,
            self.store,
            connections=self.registry.tracked,
            on_status_update=self._on_status_update,
            on_restored=self._on_restored,
            notifier=self.notifications,
            interval_seconds=sched.interval_seconds,
            initial_delay_seconds=sched.initial_delay_seconds,
            visibility_debounce_seconds=sched.visibility_debounce_seconds,
            batch_size=sched.batch_size,
            probe_timeout_seconds=sched.probe_timeout_seconds,
            enabled=sched.enabled,
        )
        self.engine = ConnectionLifecycleEngine(
            self.store,
            self.client,
            registry=self.registry,
            notifier=self.notifications,
            qr_ttl_seconds=config.scan.qr_ttl_seconds,
            poll_interval_seconds=config.scan.poll_interval_seconds,
            auto_close_delay_seconds=config.scan.auto_close_delay_seconds,
            on_scan_activity=self.scheduler.set_modal_open,
            auto_start_scan=auto_start_scan,
        )

    def _on_status_update(self, connection_id, new_state) -> None:
        self.engine.apply_remote_state(connection_id, new_state)

    def _on_restored(self, connection_id: str) -> None:
        self.engine.refresh_connection(connection_id)

    async def start(self, run_scheduler: bool = True) -> None:
        """Load every connection and start the reconciliation timer.

        A failed initial load is logged and does not keep the timer from
        starting.
        """
        try:
            connections = self.engine.reload()
            logger.info("Loaded %d connections", len(connections))
        except StoreError as e:
            logger.error("Initial connection load failed (non-blocking): %s", e)
        if run_scheduler:
            self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop timers and polls, then close the link client."""
        await self.scheduler.stop()
        await self.engine.shutdown()
        await self.client.aclose()
        logger.info("Console runtime stopped")
