"""Cancellation token and per-connection bookkeeping for QR scan flows.

A ScanSession exists while the scan dialog for a connection is open. Its
PollHandle owns the confirmation-poll task and the expiry countdown task;
cancelling the handle stops both, so no probe or tick can run after a
logical cancel.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class PollHandle:
    """Cancellation token returned when polling starts.

    Cancelling is idempotent. A task may cancel its own handle (the poll
    loop does this on confirmation); the calling task is never
    ``Task.cancel()``-ed, it observes ``cancelled`` and returns.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def tasks(self) -> tuple[asyncio.Task, ...]:
        return tuple(self._tasks)

    def attach(self, task: asyncio.Task) -> asyncio.Task:
        """Bind a task to this handle; cancelled immediately if the handle already is."""
        self._tasks.append(task)
        if self.cancelled:
            task.cancel()
        return task

    def cancel(self) -> None:
        if self.cancelled:
            return
        self._event.set()
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; returns True if cancelled meanwhile."""
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        return self.cancelled

    async def wait_closed(self) -> None:
        """Wait for every attached task to finish after a cancel."""
        pending = [t for t in self._tasks if t is not asyncio.current_task()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


@dataclass
class ScanSession:
    """State of one open scan dialog."""

    connection_id: str
    name: str
    handle: PollHandle = field(default_factory=PollHandle)
    polling: bool = False
    confirmed: bool = False
    expired: bool = False
    probe_count: int = 0
    auto_close: asyncio.TimerHandle | None = None

    def stop(self) -> None:
        """Cancel polling, countdown and any pending auto-close."""
        self.handle.cancel()
        self.polling = False
        if self.auto_close is not None:
            self.auto_close.cancel()
            self.auto_close = None
