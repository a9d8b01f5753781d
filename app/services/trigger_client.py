"""Client for the remote workflow-dispatch API.

Sends dispatch requests with bounded exponential-backoff retry and reads
run status back from the remote automation system.
"""

import asyncio
from typing import Any, Awaitable, Callable

import httpx

from app.config import Settings, settings as default_settings
from app.core.exceptions import RejectedByRemote, TransientDispatchFailure
from app.models.deployment import DeploymentRequest, RemoteRunStatus, RunState
from app.utils.logging import get_logger

Sleep = Callable[[float], Awaitable[None]]

# Remote status vocabulary -> local state. "completed" needs the conclusion.
_WAITING_STATUSES = frozenset({"queued", "requested", "waiting", "pending"})
_RUNNING_STATUSES = frozenset({"in_progress", "running"})
_SUCCESS_CONCLUSIONS = frozenset({"success", "succeeded"})
_FAILURE_STATUSES = frozenset({"failure", "failed", "cancelled", "error"})

# Response body excerpt kept when the remote rejects a call
_BODY_LIMIT = 2000


def map_remote_state(status: str, conclusion: str | None = None) -> RunState:
    """Map a remote run status onto the local run state."""
    status = status.lower()
    if status in _WAITING_STATUSES:
        return RunState.DISPATCHED
    if status in _RUNNING_STATUSES:
        return RunState.IN_PROGRESS
    if status in _SUCCESS_CONCLUSIONS:
        return RunState.SUCCEEDED
    if status in _FAILURE_STATUSES:
        return RunState.FAILED
    if status == "completed":
        if conclusion and conclusion.lower() in _SUCCESS_CONCLUSIONS:
            return RunState.SUCCEEDED
        return RunState.FAILED
    raise ValueError(f"Unknown remote run status: {status}")


class TriggerClient:
    """Outbound calls to the remote automation API."""

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or default_settings
        self._client = client or httpx.AsyncClient(
            timeout=self.config.dispatch_timeout_seconds
        )
        self._sleep = sleep
        self.logger = get_logger("trigger_client")

    @property
    def max_retries(self) -> int:
        return self.config.dispatch_max_retries

    def backoff_delays(self) -> list[float]:
        """Delays slept before each retry: 0.5s, 1s, 2s with the defaults."""
        base = self.config.dispatch_backoff_seconds
        return [base * (2**attempt) for attempt in range(self.max_retries)]

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.dispatch_token:
            headers["Authorization"] = f"Bearer {self.config.dispatch_token}"
        return headers

    async def dispatch(self, request: DeploymentRequest) -> str:
        """Ask the remote system to start a run.

        Transport errors and 5xx replies are retried up to ``max_retries``
        times. 4xx replies fail immediately.

        Returns:
            The remote run id

        Raises:
            RejectedByRemote: the remote refused the call
            TransientDispatchFailure: retries exhausted
        """
        payload = {
            "ref": request.ref,
            "inputs": {**request.inputs, "environment": request.environment},
        }
        delays = self.backoff_delays()
        attempts = 0
        last_error = ""

        while True:
            attempts += 1
            self.logger.info(
                "trigger_client.dispatch.attempt",
                environment=request.environment,
                ref=request.ref,
                attempt=attempts,
            )
            try:
                response = await self._client.post(
                    self.config.dispatch_url,
                    json=payload,
                    headers=self._headers(),
                )
            except httpx.TransportError as e:
                last_error = f"{type(e).__name__}: {e}"
            else:
                if response.status_code >= 500:
                    last_error = f"HTTP {response.status_code}"
                elif response.status_code >= 400:
                    self.logger.warning(
                        "trigger_client.dispatch.rejected",
                        environment=request.environment,
                        remote_status=response.status_code,
                    )
                    raise RejectedByRemote(
                        response.status_code, response.text[:_BODY_LIMIT]
                    )
                else:
                    run_id = self._extract_run_id(response)
                    self.logger.info(
                        "trigger_client.dispatch.succeeded",
                        environment=request.environment,
                        run_id=run_id,
                        attempts=attempts,
                    )
                    return run_id

            retry_index = attempts - 1
            if retry_index >= len(delays):
                self.logger.error(
                    "trigger_client.dispatch.exhausted",
                    environment=request.environment,
                    attempts=attempts,
                    error=last_error,
                )
                raise TransientDispatchFailure(attempts, last_error)

            delay = delays[retry_index]
            self.logger.warning(
                "trigger_client.dispatch.retrying",
                environment=request.environment,
                attempt=attempts,
                delay_seconds=delay,
                error=last_error,
            )
            await self._sleep(delay)

    def _extract_run_id(self, response: httpx.Response) -> str:
        """Pull the run id out of a successful dispatch reply."""
        try:
            body: Any = response.json()
        except ValueError:
            body = None

        run_id = None
        if isinstance(body, dict):
            run_id = body.get("run_id") or body.get("runId") or body.get("id")
        if not run_id:
            raise RejectedByRemote(
                response.status_code,
                f"dispatch reply carried no run id: {response.text[:_BODY_LIMIT]}",
            )
        return str(run_id)

    async def get_run_status(self, run_id: str) -> RemoteRunStatus:
        """Fetch the current status of a remote run.

        Raises:
            httpx.HTTPError: the status call failed
        """
        url = self.config.run_status_url.format(run_id=run_id)
        response = await self._client.get(url, headers=self._headers())
        response.raise_for_status()
        return RemoteRunStatus.model_validate(response.json())

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
