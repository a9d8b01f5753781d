"""Best-effort delivery of run transitions to an alerting webhook."""

import asyncio

import httpx

from app.config import Settings, settings as default_settings
from app.models.deployment import RunState, RunTransition
from app.utils.logging import get_logger

# One retry after the first failure
DELIVERY_ATTEMPTS = 2

_STATE_LABELS = {
    RunState.PENDING: "pending",
    RunState.DISPATCHED: "dispatched",
    RunState.IN_PROGRESS: "started",
    RunState.SUCCEEDED: "succeeded",
    RunState.FAILED: "FAILED",
    RunState.TIMED_OUT: "TIMED OUT",
}


def format_summary(transition: RunTransition) -> str:
    """One-line human summary of a transition."""
    run = transition.run
    summary = (
        f"[{run.environment}] deployment of {run.request.ref} "
        f"{_STATE_LABELS[run.state]} (run {run.id}, was {transition.previous_state.value})"
    )
    if run.error:
        summary += f": {run.error}"
    return summary


class Notifier:
    """Sends transition summaries to the configured webhook.

    Delivery runs in the background; a failed delivery is retried once and
    then only logged. Nothing here ever raises into the deployment path.
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or default_settings
        self.webhook_url = self.config.notify_webhook_url
        self._client = client or httpx.AsyncClient(
            timeout=self.config.notify_timeout_seconds
        )
        self._pending: set[asyncio.Task[bool]] = set()
        self.logger = get_logger("notifier")

    def build_payload(self, transition: RunTransition) -> dict[str, str]:
        run = transition.run
        return {
            "summary": format_summary(transition),
            "state": run.state.value,
            "environment": run.environment,
            "runId": run.id,
        }

    async def notify(self, transition: RunTransition) -> None:
        """Schedule delivery of a transition and return immediately."""
        task = asyncio.create_task(self.deliver(transition))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def deliver(self, transition: RunTransition) -> bool:
        """Deliver one transition. Returns True when the sink accepted it."""
        payload = self.build_payload(transition)

        if not self.webhook_url:
            self.logger.info("notifier.local_only", **payload)
            return False

        for attempt in range(1, DELIVERY_ATTEMPTS + 1):
            try:
                response = await self._client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                self.logger.warning(
                    "notifier.delivery_failed",
                    run_id=payload["runId"],
                    attempt=attempt,
                    error=str(e),
                )
                continue

            self.logger.info(
                "notifier.delivered",
                run_id=payload["runId"],
                state=payload["state"],
                attempt=attempt,
            )
            return True

        self.logger.error(
            "notifier.gave_up",
            run_id=payload["runId"],
            state=payload["state"],
            summary=payload["summary"],
        )
        return False

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
