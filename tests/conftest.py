"""Pytest configuration and fixtures."""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from app.api.deps import get_deployment_coordinator, get_events
from app.config import Settings
from app.core.coordinator import DeploymentCoordinator
from app.core.events import EventBus
from app.core.tracker import RunTracker
from app.core.validator import RequestValidator
from app.main import app
from app.models.deployment import RunTransition
from app.services.notifier import Notifier
from app.services.trigger_client import TriggerClient


class FakeClock:
    """Manually advanced clock for deadline tests."""

    def __init__(self):
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeRemote:
    """Stands in for the CI dispatch API, its run-status API and the webhook.

    Dispatch replies are consumed from ``dispatch_replies`` in order; each is
    an ``httpx.Response`` or an exception to raise. Once empty, dispatch
    succeeds with run ids r1, r2, ...
    """

    def __init__(self):
        self.dispatch_replies: list[httpx.Response | Exception] = []
        self.dispatch_delay = 0.0
        self.status_delay = 0.0
        self.statuses: dict[str, dict] = {}
        self.webhook_replies: list[httpx.Response | Exception] = []
        self.requests: list[httpx.Request] = []
        self._next_run = 0

    def calls(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    @property
    def webhook_calls(self) -> list[httpx.Request]:
        return self.calls("/hook")

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/dispatch":
            if self.dispatch_delay:
                await asyncio.sleep(self.dispatch_delay)
            if self.dispatch_replies:
                return self._reply(self.dispatch_replies.pop(0))
            self._next_run += 1
            return httpx.Response(200, json={"run_id": f"r{self._next_run}"})

        if path.startswith("/runs/"):
            if self.status_delay:
                await asyncio.sleep(self.status_delay)
            run_id = path.rsplit("/", 1)[-1]
            if run_id not in self.statuses:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self.statuses[run_id])

        if path == "/hook":
            if self.webhook_replies:
                return self._reply(self.webhook_replies.pop(0))
            return httpx.Response(204)

        return httpx.Response(404)

    @staticmethod
    def _reply(reply: httpx.Response | Exception) -> httpx.Response:
        if isinstance(reply, Exception):
            raise reply
        return reply


class SleepRecorder:
    """Records requested sleeps without waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def test_settings() -> Settings:
    """Settings pointing every outbound call at the fake remote."""
    return Settings(
        dispatch_url="https://ci.test/dispatch",
        run_status_url="https://ci.test/runs/{run_id}",
        dispatch_token="test-token",
        dispatch_max_retries=3,
        dispatch_backoff_seconds=0.5,
        allowed_environments=["dev", "staging", "prod"],
        allowed_input_keys=["services", "image_tag"],
        poll_enabled=False,
        poll_interval_seconds=5.0,
        run_deadline_minutes=30.0,
        notify_webhook_url="https://hooks.test/hook",
        log_directory="",
    )


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def http_client(remote: FakeRemote):
    """Async HTTP client whose transport is the fake remote."""
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as c:
        yield c


@pytest.fixture
def trigger_client(
    test_settings: Settings, http_client: httpx.AsyncClient, sleeper: SleepRecorder
) -> TriggerClient:
    return TriggerClient(test_settings, client=http_client, sleep=sleeper)


@pytest.fixture
def notifier(test_settings: Settings, http_client: httpx.AsyncClient) -> Notifier:
    return Notifier(test_settings, client=http_client)


@pytest.fixture
def tracker(clock: FakeClock) -> RunTracker:
    return RunTracker(
        deadline=timedelta(minutes=30),
        retention=timedelta(hours=1),
        clock=clock,
    )


@pytest.fixture
def transitions(tracker: RunTracker) -> list[RunTransition]:
    """Every transition the tracker emits, in order."""
    seen: list[RunTransition] = []

    async def record(transition: RunTransition) -> None:
        seen.append(transition)

    tracker.add_listener(record)
    return seen


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
async def coordinator(
    test_settings: Settings,
    tracker: RunTracker,
    trigger_client: TriggerClient,
    notifier: Notifier,
    events: EventBus,
    sleeper: SleepRecorder,
) -> DeploymentCoordinator:
    """Coordinator wired entirely to fakes."""
    coordinator = DeploymentCoordinator(
        validator=RequestValidator(
            test_settings.allowed_environments, test_settings.allowed_input_keys
        ),
        tracker=tracker,
        trigger_client=trigger_client,
        notifier=notifier,
        events=events,
        poll_interval=test_settings.poll_interval_seconds,
        sleep=sleeper,
    )
    yield coordinator
    await coordinator.notifier.drain()


@pytest.fixture
async def client(coordinator: DeploymentCoordinator, events: EventBus):
    """Async test client for the API, backed by the fake-wired coordinator."""
    app.dependency_overrides[get_deployment_coordinator] = lambda: coordinator
    app.dependency_overrides[get_events] = lambda: events

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
