"""Dependency injection for API endpoints."""

from typing import Annotated

from fastapi import Depends

from app.core.coordinator import DeploymentCoordinator, get_coordinator
from app.core.events import EventBus, get_event_bus
from app.models.deployment import DeploymentRun


async def get_deployment_coordinator() -> DeploymentCoordinator:
    """Get the deployment coordinator."""
    return get_coordinator()


async def get_events() -> EventBus:
    """Get the event bus."""
    return get_event_bus()


async def get_run_by_id(
    run_id: str,
    coordinator: Annotated[DeploymentCoordinator, Depends(get_deployment_coordinator)],
) -> DeploymentRun:
    """Get a run by ID; unknown ids surface as RunNotFound (404)."""
    return coordinator.get_run(run_id)


# Type aliases for cleaner signatures
CoordinatorDep = Annotated[DeploymentCoordinator, Depends(get_deployment_coordinator)]
EventsDep = Annotated[EventBus, Depends(get_events)]
RunDep = Annotated[DeploymentRun, Depends(get_run_by_id)]
