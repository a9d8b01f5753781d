"""Deployment data models."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class RunState(str, Enum):
    """Local lifecycle state of a deployment run."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATES

    @property
    def is_terminal(self) -> bool:
        return not self.is_active


ACTIVE_STATES = frozenset(
    {RunState.PENDING, RunState.DISPATCHED, RunState.IN_PROGRESS}
)

# Allowed moves out of each state. Terminal states have none.
TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.PENDING: frozenset({RunState.DISPATCHED}),
    RunState.DISPATCHED: frozenset(
        {
            RunState.IN_PROGRESS,
            RunState.SUCCEEDED,
            RunState.FAILED,
            RunState.TIMED_OUT,
        }
    ),
    RunState.IN_PROGRESS: frozenset(
        {RunState.SUCCEEDED, RunState.FAILED, RunState.TIMED_OUT}
    ),
    RunState.SUCCEEDED: frozenset(),
    RunState.FAILED: frozenset(),
    RunState.TIMED_OUT: frozenset(),
}


class DeploymentRequest(BaseModel):
    """Request to deploy a ref to an environment.

    Emptiness and allow-list checks live in the request validator so that
    every violation can be reported in one response.
    """

    model_config = ConfigDict(frozen=True)

    environment: str
    ref: str
    inputs: dict[str, str] = Field(default_factory=dict)


class DeploymentRun(BaseModel):
    """Immutable snapshot of a deployment run.

    The run tracker is the only writer; every transition produces a new
    snapshot via ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    request: DeploymentRequest
    state: RunState = RunState.PENDING

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None

    # Last values reported by the remote run-status endpoint
    remote_status: str | None = None
    remote_conclusion: str | None = None

    error: str | None = None

    @property
    def environment(self) -> str:
        return self.request.environment


class RunTransition(BaseModel):
    """A state change of a run, as seen by listeners."""

    model_config = ConfigDict(frozen=True)

    run: DeploymentRun
    previous_state: RunState
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def state(self) -> RunState:
        return self.run.state


class RemoteRunStatus(BaseModel):
    """Status document returned by the remote run-status endpoint."""

    status: str
    conclusion: str | None = None


class DeploymentRunResponse(BaseModel):
    """API response model for a deployment run."""

    run_id: str
    environment: str
    ref: str
    inputs: dict[str, str] = Field(default_factory=dict)
    state: RunState

    created_at: datetime
    updated_at: datetime
    dispatched_at: datetime | None = None
    completed_at: datetime | None = None

    remote_status: str | None = None
    remote_conclusion: str | None = None
    error: str | None = None

    @classmethod
    def from_run(cls, run: DeploymentRun) -> "DeploymentRunResponse":
        """Create response from run snapshot."""
        return cls(
            run_id=run.id,
            environment=run.request.environment,
            ref=run.request.ref,
            inputs=run.request.inputs,
            state=run.state,
            created_at=run.created_at,
            updated_at=run.updated_at,
            dispatched_at=run.dispatched_at,
            completed_at=run.completed_at,
            remote_status=run.remote_status,
            remote_conclusion=run.remote_conclusion,
            error=run.error,
        )


class RunStatusResponse(BaseModel):
    """Minimal status payload."""

    run_id: str
    state: RunState


class ErrorResponse(BaseModel):
    """Error body returned by every failing endpoint."""

    kind: str
    message: str
    details: list[dict[str, Any]] = Field(default_factory=list)
