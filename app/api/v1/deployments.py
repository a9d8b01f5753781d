"""Deployment endpoints."""

import asyncio
import json
from typing import Annotated

from fastapi import APIRouter, Query, status
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from app.api.deps import CoordinatorDep, EventsDep, RunDep
from app.core.events import Event
from app.models.deployment import (
    DeploymentRequest,
    DeploymentRunResponse,
    ErrorResponse,
    RunState,
    RunStatusResponse,
)

router = APIRouter()

# Longest a client may block on /wait
MAX_WAIT_SECONDS = 300.0

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
}


class DeploymentListResponse(BaseModel):
    """Response for listing deployment runs."""

    runs: list[DeploymentRunResponse]
    total: int
    limit: int
    offset: int


@router.post(
    "",
    response_model=DeploymentRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses=_ERROR_RESPONSES,
    summary="Trigger a deployment",
    description="Validate the request and dispatch a run. Returns once the remote system acknowledged the dispatch.",
)
async def trigger_deployment(
    data: DeploymentRequest,
    coordinator: CoordinatorDep,
) -> DeploymentRunResponse:
    """Trigger a deployment for one environment."""
    run = await coordinator.trigger_deployment(data)
    return DeploymentRunResponse.from_run(run)


@router.get(
    "",
    response_model=DeploymentListResponse,
    summary="List deployment runs",
)
async def list_deployments(
    coordinator: CoordinatorDep,
    environment: Annotated[str | None, Query()] = None,
    state: Annotated[RunState | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> DeploymentListResponse:
    """List runs, newest first."""
    runs, total = coordinator.tracker.list_runs(
        environment=environment,
        state=state,
        limit=limit,
        offset=offset,
    )
    return DeploymentListResponse(
        runs=[DeploymentRunResponse.from_run(r) for r in runs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{run_id}",
    response_model=DeploymentRunResponse,
    summary="Get run details",
)
async def get_deployment(run: RunDep) -> DeploymentRunResponse:
    return DeploymentRunResponse.from_run(run)


@router.get(
    "/{run_id}/status",
    response_model=RunStatusResponse,
    summary="Get run state",
)
async def get_deployment_status(
    run: RunDep,
    coordinator: CoordinatorDep,
) -> RunStatusResponse:
    """Current local state; applies the run deadline but does not poll."""
    state = await coordinator.get_status(run.id)
    return RunStatusResponse(run_id=run.id, state=state)


@router.post(
    "/{run_id}/refresh",
    response_model=DeploymentRunResponse,
    summary="Poll the remote run once",
)
async def refresh_deployment(
    run: RunDep,
    coordinator: CoordinatorDep,
) -> DeploymentRunResponse:
    refreshed = await coordinator.refresh(run.id)
    return DeploymentRunResponse.from_run(refreshed)


@router.get(
    "/{run_id}/wait",
    response_model=DeploymentRunResponse,
    summary="Block until the run finishes or the timeout passes",
)
async def wait_for_deployment(
    run: RunDep,
    coordinator: CoordinatorDep,
    timeout: Annotated[float, Query(gt=0, le=MAX_WAIT_SECONDS)] = 30.0,
) -> DeploymentRunResponse:
    finished = await coordinator.wait_for_completion(run.id, timeout)
    return DeploymentRunResponse.from_run(finished)


@router.get(
    "/{run_id}/stream",
    summary="Stream run transitions (SSE)",
)
async def stream_deployment_events(
    run: RunDep,
    events: EventsDep,
    coordinator: CoordinatorDep,
) -> EventSourceResponse:
    """Stream state transitions for a run using Server-Sent Events."""

    async def event_generator():
        queue = events.subscribe(run.id)

        try:
            # Subscribed first, so every later transition reaches the queue
            current = coordinator.get_run(run.id)
            yield {
                "event": "connected",
                "data": json.dumps(
                    {"run_id": current.id, "state": current.state.value}
                ),
            }
            if current.state.is_terminal:
                return

            while True:
                try:
                    event: Event = await asyncio.wait_for(queue.get(), timeout=30.0)
                except asyncio.TimeoutError:
                    yield {"event": "keepalive", "data": "{}"}
                    continue

                yield event.to_message()

                if RunState(event.data["state"]).is_terminal:
                    break

        finally:
            events.unsubscribe(run.id, queue)

    return EventSourceResponse(event_generator())
