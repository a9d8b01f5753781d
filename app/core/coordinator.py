"""Deployment Coordinator.

Composes request validation, the single-flight run tracker, the remote
trigger client and the notifier into the public deployment contract.
"""

import asyncio
from functools import lru_cache
from typing import Awaitable, Callable

import httpx

from app.config import settings
from app.core.events import EventBus, get_event_bus
from app.core.exceptions import DispatchCoordinatorError, InvalidTransitionError
from app.core.tracker import RunTracker, get_run_tracker
from app.core.validator import RequestValidator
from app.models.deployment import DeploymentRequest, DeploymentRun, RunState
from app.services.notifier import Notifier
from app.services.trigger_client import TriggerClient, map_remote_state
from app.utils.logging import get_logger

Sleep = Callable[[float], Awaitable[None]]


class DeploymentCoordinator:
    """Public entry point for triggering and following deployments.

    ``trigger_deployment`` is synchronous up to the dispatch acknowledgment.
    Status is followed separately, either by ``refresh``/``wait_for_completion``
    or by subscribing to the event bus.
    """

    def __init__(
        self,
        validator: RequestValidator | None = None,
        tracker: RunTracker | None = None,
        trigger_client: TriggerClient | None = None,
        notifier: Notifier | None = None,
        events: EventBus | None = None,
        poll_interval: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.validator = validator or RequestValidator(
            settings.allowed_environments, settings.allowed_input_keys
        )
        self.tracker = tracker or get_run_tracker()
        self.trigger_client = trigger_client or TriggerClient()
        self.notifier = notifier or Notifier()
        self.events = events or get_event_bus()
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.poll_interval_seconds
        )
        self._sleep = sleep
        self.logger = get_logger("coordinator")

        self.tracker.add_listener(self.events.publish_transition)
        self.tracker.add_listener(self.notifier.notify)

    async def trigger_deployment(self, request: DeploymentRequest) -> DeploymentRun:
        """Validate, reserve the environment, dispatch and record the run.

        Raises:
            InvalidRequest: the request failed validation
            RunAlreadyActive: the environment already has an active run
            RejectedByRemote: the remote refused the dispatch
            TransientDispatchFailure: dispatch retries were exhausted
            InvalidTransitionError: the remote answered with a run id that is
                already tracked
        """
        request = self.validator.validate(request)
        reservation = await self.tracker.reserve(request)

        self.logger.info(
            "coordinator.dispatch.started",
            environment=request.environment,
            ref=request.ref,
            reservation_id=reservation.id,
        )

        try:
            remote_run_id = await self.trigger_client.dispatch(request)
        except BaseException as e:
            # Cancellation too: the reservation must not outlive the dispatch
            self.tracker.abandon(reservation.id, str(e) or type(e).__name__)
            raise

        try:
            run = await self.tracker.confirm_dispatch(reservation.id, remote_run_id)
        except InvalidTransitionError as e:
            self.tracker.abandon(reservation.id, e.message)
            raise

        self.logger.info(
            "coordinator.dispatch.acknowledged",
            environment=request.environment,
            run_id=run.id,
        )
        return run

    async def get_status(self, run_id: str) -> RunState:
        """Current local state of a run."""
        return await self.tracker.get_status(run_id)

    def get_run(self, run_id: str) -> DeploymentRun:
        return self.tracker.get(run_id)

    async def refresh(self, run_id: str) -> DeploymentRun:
        """Poll the remote once and fold the answer into the run.

        A failing status call leaves the run unchanged apart from the
        deadline check.
        """
        run = self.tracker.get(run_id)
        if run.state not in (RunState.DISPATCHED, RunState.IN_PROGRESS):
            return run

        try:
            remote = await self.trigger_client.get_run_status(run_id)
            state = map_remote_state(remote.status, remote.conclusion)
        except (httpx.HTTPError, ValueError) as e:
            self.logger.warning(
                "coordinator.poll.failed",
                run_id=run_id,
                error=str(e),
            )
        else:
            await self.tracker.apply_remote_state(
                run_id, state, remote.status, remote.conclusion
            )

        return await self.tracker.expire_if_overdue(run_id)

    async def wait_for_completion(
        self, run_id: str, timeout: float
    ) -> DeploymentRun:
        """Refresh a run until it is terminal or ``timeout`` seconds pass.

        Returns the latest snapshot either way. The timeout bounds wall-clock
        time, including slow status calls.
        """
        try:
            return await asyncio.wait_for(
                self._poll_until_terminal(run_id, timeout), timeout
            )
        except asyncio.TimeoutError:
            self.logger.info(
                "coordinator.wait.timed_out", run_id=run_id, timeout=timeout
            )
            return await self.tracker.expire_if_overdue(run_id)

    async def _poll_until_terminal(self, run_id: str, timeout: float) -> DeploymentRun:
        waited = 0.0
        run = await self.refresh(run_id)
        while run.state.is_active and waited < timeout:
            delay = min(self.poll_interval, timeout - waited)
            await self._sleep(delay)
            waited += delay
            run = await self.refresh(run_id)
        return run

    async def refresh_active(self) -> int:
        """Refresh every active run. Returns how many were polled."""
        runs = [
            r
            for r in self.tracker.active_runs()
            if r.state in (RunState.DISPATCHED, RunState.IN_PROGRESS)
        ]
        for run in runs:
            try:
                await self.refresh(run.id)
            except DispatchCoordinatorError as e:
                # The run may have been cleaned up between listing and polling
                self.logger.warning(
                    "coordinator.poll.skipped", run_id=run.id, error=e.message
                )
        return len(runs)

    async def aclose(self) -> None:
        await self.notifier.aclose()
        await self.trigger_client.aclose()


# Singleton instance
_coordinator: DeploymentCoordinator | None = None


@lru_cache
def get_coordinator() -> DeploymentCoordinator:
    """Get the coordinator singleton."""
    global _coordinator
    if _coordinator is None:
        _coordinator = DeploymentCoordinator()
    return _coordinator
