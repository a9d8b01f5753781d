"""Unit tests for the transition notifier."""

import json

import httpx
import pytest

from app.models.deployment import (
    DeploymentRequest,
    DeploymentRun,
    RunState,
    RunTransition,
)
from app.services.notifier import Notifier, format_summary


@pytest.fixture
def transition() -> RunTransition:
    run = DeploymentRun(
        id="r1",
        request=DeploymentRequest(environment="prod", ref="main"),
        state=RunState.FAILED,
        error="exit code 1",
    )
    return RunTransition(run=run, previous_state=RunState.IN_PROGRESS)


class TestFormatting:
    """Tests for summary formatting."""

    def test_summary_names_environment_ref_and_run(self, transition: RunTransition):
        summary = format_summary(transition)

        assert summary.startswith("[prod] deployment of main FAILED")
        assert "run r1" in summary
        assert "was in_progress" in summary
        assert summary.endswith(": exit code 1")

    def test_payload_shape(self, notifier: Notifier, transition: RunTransition):
        payload = notifier.build_payload(transition)

        assert payload == {
            "summary": format_summary(transition),
            "state": "failed",
            "environment": "prod",
            "runId": "r1",
        }


class TestDelivery:
    """Tests for webhook delivery."""

    @pytest.mark.asyncio
    async def test_delivers_payload(self, notifier: Notifier, remote, transition):
        delivered = await notifier.deliver(transition)

        assert delivered is True
        assert len(remote.webhook_calls) == 1
        body = json.loads(remote.webhook_calls[0].content)
        assert body["runId"] == "r1"
        assert body["state"] == "failed"

    @pytest.mark.asyncio
    async def test_retries_once(self, notifier: Notifier, remote, transition):
        remote.webhook_replies = [httpx.Response(500)]

        delivered = await notifier.deliver(transition)

        assert delivered is True
        assert len(remote.webhook_calls) == 2

    @pytest.mark.asyncio
    async def test_gives_up_quietly(self, notifier: Notifier, remote, transition):
        """Two failures are logged, never raised."""
        remote.webhook_replies = [
            httpx.ConnectError("no route to host"),
            httpx.Response(503),
            httpx.Response(204),
        ]

        delivered = await notifier.deliver(transition)

        assert delivered is False
        assert len(remote.webhook_calls) == 2

    @pytest.mark.asyncio
    async def test_without_webhook_only_logs(
        self, test_settings, http_client, remote, transition
    ):
        notifier = Notifier(
            test_settings.model_copy(update={"notify_webhook_url": None}),
            client=http_client,
        )

        delivered = await notifier.deliver(transition)

        assert delivered is False
        assert remote.webhook_calls == []

    @pytest.mark.asyncio
    async def test_notify_runs_in_background(
        self, notifier: Notifier, remote, transition
    ):
        await notifier.notify(transition)
        await notifier.drain()

        assert len(remote.webhook_calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_webhook_url_logged(
        self, test_settings, http_client, remote, transition
    ):
        notifier = Notifier(
            test_settings.model_copy(
                update={"notify_webhook_url": "https://hooks.test:notaport/hook"}
            ),
            client=http_client,
        )

        delivered = await notifier.deliver(transition)

        assert delivered is False
        assert remote.webhook_calls == []
