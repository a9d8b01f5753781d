"""Custom exceptions for the dispatch coordinator."""

from typing import Any


class DispatchCoordinatorError(Exception):
    """Base exception for the dispatch coordinator."""

    status_code: int = 500

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(message)

    @property
    def kind(self) -> str:
        """Error kind reported in API error bodies."""
        return type(self).__name__.removesuffix("Error")


class InvalidRequest(DispatchCoordinatorError):
    """Deployment request failed validation."""

    status_code = 400

    def __init__(self, violations: list[dict[str, Any]]):
        fields = ", ".join(v["field"] for v in violations)
        super().__init__(f"Invalid deployment request: {fields}", violations)

    @property
    def fields(self) -> list[str]:
        return [v["field"] for v in self.details]


class RunAlreadyActive(DispatchCoordinatorError):
    """The environment already has a run in flight."""

    status_code = 409

    def __init__(self, environment: str, active_run_id: str):
        super().__init__(
            f"Environment '{environment}' already has an active run: {active_run_id}",
            [{"environment": environment, "active_run_id": active_run_id}],
        )
        self.environment = environment
        self.active_run_id = active_run_id


class RejectedByRemote(DispatchCoordinatorError):
    """The remote automation API refused the dispatch."""

    status_code = 502

    def __init__(self, remote_status: int, body: str):
        super().__init__(
            f"Dispatch rejected by remote (HTTP {remote_status})",
            [{"remote_status": remote_status, "body": body}],
        )
        self.remote_status = remote_status
        self.body = body


class TransientDispatchFailure(DispatchCoordinatorError):
    """Dispatch kept failing transiently until retries ran out."""

    status_code = 503

    def __init__(self, attempts: int, last_error: str):
        super().__init__(
            f"Dispatch failed after {attempts} attempts: {last_error}",
            [{"attempts": attempts, "last_error": last_error}],
        )
        self.attempts = attempts
        self.last_error = last_error


class RunNotFoundError(DispatchCoordinatorError):
    """Run not found."""

    status_code = 404

    def __init__(self, run_id: str):
        super().__init__(f"Run not found: {run_id}", [{"run_id": run_id}])


class InvalidTransitionError(DispatchCoordinatorError):
    """A run was asked to move to a state its current state does not allow."""

    status_code = 409

    def __init__(self, run_id: str, current: str, requested: str):
        super().__init__(
            f"Run '{run_id}' cannot move from {current} to {requested}",
            [{"run_id": run_id, "current": current, "requested": requested}],
        )
