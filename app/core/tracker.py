"""Run tracking and the per-environment single-flight guard."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from functools import lru_cache
from typing import Awaitable, Callable
from uuid import uuid4

from app.config import settings
from app.core.exceptions import (
    InvalidTransitionError,
    RunAlreadyActive,
    RunNotFoundError,
)
from app.models.deployment import (
    TRANSITIONS,
    DeploymentRequest,
    DeploymentRun,
    RunState,
    RunTransition,
    utcnow,
)
from app.utils.logging import get_logger

Listener = Callable[[RunTransition], Awaitable[None]]
Clock = Callable[[], datetime]


class RunTracker:
    """Owns every DeploymentRun and its state machine.

    Runs are stored as immutable snapshots and replaced on each transition.
    At most one run per environment is active (pending, dispatched or
    in progress) at any time; a second request for a busy environment is
    rejected rather than queued.

    Note: state is kept in memory. A restart forgets in-flight runs.
    """

    def __init__(
        self,
        deadline: timedelta | None = None,
        retention: timedelta | None = None,
        clock: Clock = utcnow,
    ):
        self._runs: dict[str, DeploymentRun] = {}
        self._active: dict[str, str] = {}
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._listeners: list[Listener] = []
        self.deadline = deadline or timedelta(minutes=settings.run_deadline_minutes)
        self.retention = retention or timedelta(hours=settings.run_retention_hours)
        self._clock = clock
        self.logger = get_logger("tracker")

    def add_listener(self, listener: Listener) -> None:
        """Register a coroutine called with every transition."""
        self._listeners.append(listener)

    # Single-flight guard

    async def reserve(self, request: DeploymentRequest) -> DeploymentRun:
        """Claim the environment with a pending run.

        Raises:
            RunAlreadyActive: the environment already has an active run
        """
        environment = request.environment
        async with self._locks[environment]:
            active = self.active_run(environment)
            if active is not None:
                self.logger.info(
                    "tracker.reserve.conflict",
                    environment=environment,
                    active_run_id=active.id,
                    active_state=active.state.value,
                )
                raise RunAlreadyActive(environment, active.id)

            now = self._clock()
            run = DeploymentRun(
                id=f"pending-{uuid4().hex[:12]}",
                request=request,
                state=RunState.PENDING,
                created_at=now,
                updated_at=now,
            )
            self._store(run)

        self.logger.info(
            "tracker.reserve.created",
            environment=environment,
            reservation_id=run.id,
        )
        return run

    async def confirm_dispatch(
        self, reservation_id: str, remote_run_id: str
    ) -> DeploymentRun:
        """Move a reservation to dispatched under the remote run id.

        Raises:
            InvalidTransitionError: the reservation is no longer pending, or
                the remote run id already belongs to another run
        """
        reservation = self.get(reservation_id)
        async with self._locks[reservation.environment]:
            reservation = self.get(reservation_id)
            self._check_transition(reservation, RunState.DISPATCHED)

            existing = self._runs.get(remote_run_id)
            if existing is not None:
                self.logger.error(
                    "tracker.confirm.duplicate_run_id",
                    run_id=remote_run_id,
                    environment=reservation.environment,
                    existing_environment=existing.environment,
                )
                raise InvalidTransitionError(
                    remote_run_id, existing.state.value, RunState.DISPATCHED.value
                )

            now = self._clock()
            run = reservation.model_copy(
                update={
                    "id": remote_run_id,
                    "state": RunState.DISPATCHED,
                    "updated_at": now,
                    "dispatched_at": now,
                }
            )
            del self._runs[reservation_id]
            self._store(run)

        await self._emit(RunTransition(run=run, previous_state=RunState.PENDING))
        return run

    def abandon(self, reservation_id: str, reason: str) -> None:
        """Drop a reservation whose dispatch never succeeded."""
        reservation = self.get(reservation_id)
        if reservation.state != RunState.PENDING:
            raise InvalidTransitionError(
                reservation_id, reservation.state.value, "abandoned"
            )
        del self._runs[reservation_id]
        if self._active.get(reservation.environment) == reservation_id:
            del self._active[reservation.environment]

        self.logger.warning(
            "tracker.reserve.abandoned",
            environment=reservation.environment,
            reservation_id=reservation_id,
            reason=reason,
        )

    # State changes

    async def apply_remote_state(
        self,
        run_id: str,
        state: RunState,
        remote_status: str | None = None,
        remote_conclusion: str | None = None,
    ) -> DeploymentRun:
        """Apply a state reported by the remote system.

        Reports about a run that already reached a terminal state are ignored,
        as are repeats of the current state and moves backwards.
        """
        run = self.get(run_id)
        if run.state.is_terminal or run.state == state:
            return run
        if state not in TRANSITIONS[run.state]:
            self.logger.warning(
                "tracker.remote_state.ignored",
                run_id=run_id,
                state=run.state.value,
                reported=state.value,
            )
            return run
        return await self._transition(
            run,
            state,
            remote_status=remote_status,
            remote_conclusion=remote_conclusion,
        )

    async def expire_if_overdue(self, run_id: str) -> DeploymentRun:
        """Mark a run timed out once its deadline has passed.

        Only dispatched and in-progress runs can time out. Calling this again
        on a timed-out run returns it unchanged.
        """
        run = self.get(run_id)
        if run.state not in (RunState.DISPATCHED, RunState.IN_PROGRESS):
            return run
        if self._clock() - run.created_at <= self.deadline:
            return run
        return await self._transition(
            run,
            RunState.TIMED_OUT,
            error=f"no terminal report within {self.deadline}",
        )

    async def _transition(
        self,
        run: DeploymentRun,
        state: RunState,
        **changes: str | None,
    ) -> DeploymentRun:
        self._check_transition(run, state)

        now = self._clock()
        update: dict = {"state": state, "updated_at": now}
        update.update({k: v for k, v in changes.items() if v is not None})
        if state.is_terminal:
            update["completed_at"] = now

        updated = run.model_copy(update=update)
        self._store(updated)
        await self._emit(RunTransition(run=updated, previous_state=run.state))
        return updated

    def _check_transition(self, run: DeploymentRun, state: RunState) -> None:
        if state not in TRANSITIONS[run.state]:
            raise InvalidTransitionError(run.id, run.state.value, state.value)

    def _store(self, run: DeploymentRun) -> None:
        self._runs[run.id] = run
        environment = run.environment
        if run.state.is_active:
            self._active[environment] = run.id
        elif self._active.get(environment) == run.id:
            del self._active[environment]

    async def _emit(self, transition: RunTransition) -> None:
        run = transition.run
        self.logger.info(
            "tracker.run.transition",
            run_id=run.id,
            environment=run.environment,
            previous_state=transition.previous_state.value,
            state=run.state.value,
        )
        for listener in self._listeners:
            try:
                await listener(transition)
            except Exception:
                self.logger.exception(
                    "tracker.listener.failed",
                    run_id=run.id,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                )

    # Queries

    def get(self, run_id: str) -> DeploymentRun:
        """Get a run snapshot by id.

        Raises:
            RunNotFoundError: no such run
        """
        run = self._runs.get(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def get_status(self, run_id: str) -> RunState:
        """Current state of a run, after applying its deadline."""
        run = await self.expire_if_overdue(run_id)
        return run.state

    def active_run(self, environment: str) -> DeploymentRun | None:
        """The active run for an environment, if any."""
        run_id = self._active.get(environment)
        if run_id is None:
            return None
        return self._runs.get(run_id)

    def active_runs(self) -> list[DeploymentRun]:
        """Snapshots of every active run."""
        return [self._runs[rid] for rid in self._active.values() if rid in self._runs]

    def list_runs(
        self,
        environment: str | None = None,
        state: RunState | None = None,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[DeploymentRun], int]:
        """List runs, newest first, with optional filtering."""
        runs = list(self._runs.values())

        if environment:
            runs = [r for r in runs if r.environment == environment]
        if state:
            runs = [r for r in runs if r.state == state]

        runs.sort(key=lambda r: r.created_at, reverse=True)

        total = len(runs)
        return runs[offset : offset + limit], total

    def cleanup_expired(self) -> int:
        """Remove terminal runs past the retention window. Returns count removed."""
        cutoff = self._clock() - self.retention
        expired = [
            rid
            for rid, run in self._runs.items()
            if run.state.is_terminal
            and run.completed_at is not None
            and run.completed_at < cutoff
        ]
        for rid in expired:
            del self._runs[rid]
        return len(expired)

    def clear(self) -> None:
        """Forget every run (primarily for tests)."""
        self._runs.clear()
        self._active.clear()
        self._locks.clear()


# Singleton instance
_run_tracker: RunTracker | None = None


@lru_cache
def get_run_tracker() -> RunTracker:
    """Get the run tracker singleton."""
    global _run_tracker
    if _run_tracker is None:
        _run_tracker = RunTracker()
    return _run_tracker
