"""Background polling of active runs."""

import asyncio

from app.core.coordinator import DeploymentCoordinator
from app.utils.logging import get_logger

logger = get_logger(__name__)


class RunPoller:
    """Periodically refreshes active runs and prunes old finished ones."""

    def __init__(self, coordinator: DeploymentCoordinator, interval: float):
        self.coordinator = coordinator
        self.interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> int:
        """Run one polling pass. Returns how many runs were polled."""
        polled = await self.coordinator.refresh_active()
        removed = self.coordinator.tracker.cleanup_expired()
        if polled or removed:
            logger.debug("poller.tick", polled=polled, removed=removed)
        return polled

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("poller.tick_failed")
            await asyncio.sleep(self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="run-poller")
        logger.info("poller.started", interval_seconds=self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("poller.stopped")
