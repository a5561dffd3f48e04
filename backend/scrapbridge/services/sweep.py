import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

from scrapbridge.core.states import DISPATCHABLE
from scrapbridge.services.coordinator import OfferCoordinator

logger = logging.getLogger(__name__)


class ReconciliationSweep:
    """
    Periodic backstop for lost timers and lost dispatch tasks.

    Expired offers go through the same timeout path a live timer would take,
    so a sweep racing a timer degrades to a no-op on one side.
    """

    def __init__(
        self,
        repo,
        coordinator: OfferCoordinator,
        clock: Callable[[], datetime],
        interval_seconds: float = 10.0,
        stall_after_seconds: float = 30.0,
    ):
        self._repo = repo
        self._coordinator = coordinator
        self._clock = clock
        self.interval = interval_seconds
        self.stall_after = timedelta(seconds=stall_after_seconds)
        self._task: Optional[asyncio.Task] = None

    async def run_once(self) -> Tuple[int, int]:
        """One pass; returns (expired offers handed to the timeout path, stalled pickups restarted)."""
        now = self._clock()

        expired = 0
        for pickup in await self._repo.find_expired_offers(now):
            # one task per pickup: a slow vendor POST must not hold up the others
            self._coordinator.spawn_timeout(pickup["_id"], pickup["assigned_vendor_ref"])
            expired += 1

        restarted = 0
        for pickup in await self._repo.find_stalled_pickups(DISPATCHABLE, now - self.stall_after):
            # this process is already working on it
            if pickup["_id"] in self._coordinator.table:
                continue
            self._coordinator.spawn_dispatch(pickup["_id"])
            restarted += 1

        if expired or restarted:
            logger.info("sweep_pass expired=%d restarted=%d", expired, restarted)
        return expired, restarted

    async def _loop(self):
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("sweep_pass_failed")
            await asyncio.sleep(self.interval)

    def start(self):
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._loop(), name="reconciliation-sweep")
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
