"""Data models for the dispatch coordinator."""

from app.models.deployment import (
    ACTIVE_STATES,
    DeploymentRequest,
    DeploymentRun,
    DeploymentRunResponse,
    ErrorResponse,
    RemoteRunStatus,
    RunState,
    RunStatusResponse,
    RunTransition,
)

__all__ = [
    "ACTIVE_STATES",
    "DeploymentRequest",
    "DeploymentRun",
    "DeploymentRunResponse",
    "ErrorResponse",
    "RemoteRunStatus",
    "RunState",
    "RunStatusResponse",
    "RunTransition",
]
