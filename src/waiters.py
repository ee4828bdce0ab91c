"""Long-poll waiter coordination on top of the event log."""

import asyncio
import logging

from src.event_log import EventLog

logger = logging.getLogger(__name__)


class WaiterCoordinator:
    """Suspends poll calls until their run has news or a timeout fires.

    Each waiter is a one-shot future plus a timer. Whichever of notification
    or timer fires first settles it; the other is cancelled, and the waiter is
    always deregistered before ``wait_for_events`` returns.
    """

    def __init__(self, log: EventLog) -> None:
        self._log = log
        self._waiters: dict[str, list[asyncio.Future[None]]] = {}
        log.subscribe(self.notify)

    def pending(self, run_id: str) -> int:
        return len(self._waiters.get(run_id, ()))

    async def wait_for_events(self, run_id: str, timeout_sec: float = 15.0) -> None:
        if self._log.is_ready(run_id):
            return

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()

        def settle() -> None:
            if not waiter.done():
                waiter.set_result(None)

        timer = loop.call_later(timeout_sec, settle)
        self._waiters.setdefault(run_id, []).append(waiter)
        try:
            await waiter
        finally:
            timer.cancel()
            self._remove(run_id, waiter)

    def notify(self, run_id: str) -> None:
        waiters = self._waiters.pop(run_id, None)
        if not waiters:
            return
        logger.debug("Waking %d waiter(s) for run %s", len(waiters), run_id)
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)

    def _remove(self, run_id: str, waiter: asyncio.Future[None]) -> None:
        waiters = self._waiters.get(run_id)
        if not waiters:
            return
        if waiter in waiters:
            waiters.remove(waiter)
        if not waiters:
            del self._waiters[run_id]
