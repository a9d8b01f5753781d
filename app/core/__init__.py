"""Core functionality for the dispatch coordinator."""

from app.core.exceptions import (
    DispatchCoordinatorError,
    InvalidRequest,
    InvalidTransitionError,
    RejectedByRemote,
    RunAlreadyActive,
    RunNotFoundError,
    TransientDispatchFailure,
)
from app.core.tracker import RunTracker, get_run_tracker
from app.core.validator import RequestValidator

__all__ = [
    "DispatchCoordinatorError",
    "InvalidRequest",
    "InvalidTransitionError",
    "RejectedByRemote",
    "RunAlreadyActive",
    "RunNotFoundError",
    "TransientDispatchFailure",
    "RunTracker",
    "get_run_tracker",
    "RequestValidator",
]
