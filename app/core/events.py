"""Event system for Server-Sent Events (SSE)."""

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.models.deployment import RunTransition


@dataclass
class Event:
    """An SSE event."""

    event_type: str
    data: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        """Convert to the dict shape EventSourceResponse expects."""
        return {
            "event": self.event_type,
            "data": json.dumps({**self.data, "timestamp": self.timestamp.isoformat()}),
        }


class EventBus:
    """Fan-out of run transitions to stream subscribers, keyed by run id."""

    def __init__(self):
        self._subscribers: dict[str, list[asyncio.Queue[Event]]] = {}

    def subscribe(self, run_id: str) -> asyncio.Queue[Event]:
        """Subscribe to events for a run."""
        queue: asyncio.Queue[Event] = asyncio.Queue()
        self._subscribers.setdefault(run_id, []).append(queue)
        return queue

    def unsubscribe(self, run_id: str, queue: asyncio.Queue[Event]) -> None:
        """Drop one subscription."""
        queues = self._subscribers.get(run_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[run_id]

    def subscriber_count(self, run_id: str) -> int:
        return len(self._subscribers.get(run_id, []))

    async def publish(self, run_id: str, event: Event) -> None:
        """Publish an event for a run."""
        for queue in self._subscribers.get(run_id, []):
            await queue.put(event)

    async def publish_transition(self, transition: RunTransition) -> None:
        """Publish a run state change."""
        run = transition.run
        await self.publish(
            run.id,
            Event(
                event_type="transition",
                data={
                    "run_id": run.id,
                    "environment": run.environment,
                    "previous_state": transition.previous_state.value,
                    "state": run.state.value,
                },
                timestamp=transition.occurred_at,
            ),
        )


# Singleton instance
_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the event bus singleton."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
