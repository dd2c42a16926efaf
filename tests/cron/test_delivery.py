"""Tests for cron result delivery."""

import pytest
from unittest.mock import patch, MagicMock, AsyncMock
import httpx

from src.cron.delivery import (
    DeliveryRouter,
    build_event_text,
    build_webhook_payload,
    send_webhook,
    WEBHOOK_TIMEOUT_SECONDS,
)
from src.cron.entities import CronJob, RunResult
from src.cron.errors import DeliveryError


@pytest.fixture
def sample_job():
    """Create a sample job for testing."""
    job = CronJob(
        id="job-123",
        name="daily digest",
        schedule={"kind": "every", "everyMs": 60000},
        payload={"kind": "agentTurn", "message": "summarize"},
        delivery={"mode": "webhook", "to": "https://example.com/webhook"},
    )
    job.last_run_at = 1767225600000
    job.next_run_at = 1767225660000
    return job


@pytest.fixture
def ok_result():
    return RunResult(status="ok", output="3 new items", started_at=1767225599000, finished_at=1767225600000)


def _mock_client(response=None, side_effect=None):
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response, side_effect=side_effect)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    return mock_client


def _response(status_code: int, text: str = "OK"):
    response = MagicMock()
    response.status_code = status_code
    response.text = text
    return response


class TestBuildPayloads:
    """Tests for payload builders."""

    def test_builds_complete_webhook_payload(self, sample_job, ok_result):
        payload = build_webhook_payload(sample_job, ok_result)

        assert payload["event"] == "cron.finished"
        assert payload["jobId"] == "job-123"
        assert payload["name"] == "daily digest"
        assert payload["status"] == "ok"
        assert payload["error"] is None
        assert payload["output"] == "3 new items"
        assert payload["startedAt"] == 1767225599000
        assert payload["finishedAt"] == 1767225600000
        assert payload["lastRunAt"] == 1767225600000
        assert payload["nextRunAt"] == 1767225660000
        assert "timestamp" in payload

    def test_non_serializable_output_is_stringified(self, sample_job):
        payload = build_webhook_payload(sample_job, RunResult(status="ok", output=object()))
        assert isinstance(payload["output"], str)

    def test_event_text_variants(self, sample_job, ok_result):
        assert build_event_text(sample_job, ok_result) == "[cron] daily digest: 3 new items"
        assert build_event_text(sample_job, RunResult(status="ok")) == "[cron] daily digest completed"
        assert (
            build_event_text(sample_job, RunResult.failed("boom"))
            == "[cron] daily digest failed: boom"
        )


class TestSendWebhook:
    """Tests for send_webhook function."""

    @pytest.mark.asyncio
    async def test_successful_send(self, sample_job, ok_result):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = _mock_client(_response(200))
            mock_client_class.return_value = mock_client

            status = await send_webhook(
                "https://example.com/webhook",
                build_webhook_payload(sample_job, ok_result),
                job_id=sample_job.id,
            )

            assert status == 200
            mock_client_class.assert_called_once_with(timeout=WEBHOOK_TIMEOUT_SECONDS)
            call_kwargs = mock_client.post.call_args
            assert call_kwargs.args[0] == "https://example.com/webhook"
            assert call_kwargs.kwargs["json"]["jobId"] == "job-123"
            assert call_kwargs.kwargs["headers"]["X-Cron-Job-ID"] == "job-123"
            assert "Authorization" not in call_kwargs.kwargs["headers"]

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = _mock_client(_response(204))
            mock_client_class.return_value = mock_client

            await send_webhook("https://example.com/webhook", {}, job_id="j", token="s3cret")

            headers = mock_client.post.call_args.kwargs["headers"]
            assert headers["Authorization"] == "Bearer s3cret"

    @pytest.mark.asyncio
    async def test_non_2xx_raises(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(_response(500, "Internal Server Error"))

            with pytest.raises(DeliveryError, match="HTTP 500"):
                await send_webhook("https://example.com/webhook", {}, job_id="j")

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(
                side_effect=httpx.TimeoutException("Connection timed out")
            )

            with pytest.raises(DeliveryError, match="Timeout"):
                await send_webhook("https://example.com/webhook", {}, job_id="j")

    @pytest.mark.asyncio
    async def test_request_error_raises(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client_class.return_value = _mock_client(
                side_effect=httpx.RequestError("Connection refused")
            )

            with pytest.raises(DeliveryError, match="Request error"):
                await send_webhook("https://example.com/webhook", {}, job_id="j")


class TestDeliveryRouter:
    """Tests for DeliveryRouter routing."""

    def test_per_job_delivery_beats_legacy_webhook(self, sample_job):
        router = DeliveryRouter(legacy_webhook="https://legacy.example.com/hook")
        assert router.resolve_target(sample_job) == sample_job.delivery

    def test_legacy_webhook_used_for_notify_jobs_without_delivery(self, sample_job):
        sample_job.delivery = None
        sample_job.notify = True
        router = DeliveryRouter(legacy_webhook="https://legacy.example.com/hook")
        assert router.resolve_target(sample_job) == {
            "mode": "webhook",
            "to": "https://legacy.example.com/hook",
        }

    def test_legacy_webhook_ignored_without_notify(self, sample_job):
        sample_job.delivery = None
        router = DeliveryRouter(legacy_webhook="https://legacy.example.com/hook")
        assert router.resolve_target(sample_job) is None

    def test_no_target_without_delivery_or_legacy(self, sample_job):
        sample_job.delivery = None
        assert DeliveryRouter().resolve_target(sample_job) is None

    @pytest.mark.asyncio
    async def test_webhook_delivery(self, sample_job, ok_result):
        router = DeliveryRouter(webhook_token="tok")
        with patch("src.cron.delivery.send_webhook", new_callable=AsyncMock) as mock_send:
            mock_send.return_value = 200

            assert await router.deliver(sample_job, ok_result) is True

            args, kwargs = mock_send.call_args
            assert args[0] == "https://example.com/webhook"
            assert kwargs["token"] == "tok"

    @pytest.mark.asyncio
    async def test_webhook_failure_is_dropped(self, sample_job, ok_result):
        router = DeliveryRouter()
        with patch("src.cron.delivery.send_webhook", new_callable=AsyncMock) as mock_send:
            mock_send.side_effect = DeliveryError("job-123", "https://example.com/webhook", "HTTP 503")

            assert await router.deliver(sample_job, ok_result) is False

    @pytest.mark.asyncio
    async def test_system_event_delivery_sync_sink(self, sample_job, ok_result):
        events = []
        sample_job.delivery = {"mode": "systemEvent"}
        router = DeliveryRouter(enqueue_system_event=events.append)

        assert await router.deliver(sample_job, ok_result) is True
        assert events == ["[cron] daily digest: 3 new items"]

    @pytest.mark.asyncio
    async def test_system_event_delivery_async_sink(self, sample_job, ok_result):
        sink = AsyncMock()
        sample_job.delivery = {"mode": "systemEvent"}
        router = DeliveryRouter(enqueue_system_event=sink)

        assert await router.deliver(sample_job, ok_result) is True
        sink.assert_awaited_once_with("[cron] daily digest: 3 new items")

    @pytest.mark.asyncio
    async def test_system_event_without_sink_fails_softly(self, sample_job, ok_result):
        sample_job.delivery = {"mode": "systemEvent"}
        assert await DeliveryRouter().deliver(sample_job, ok_result) is False

    @pytest.mark.asyncio
    async def test_sink_exception_fails_softly(self, sample_job, ok_result):
        sample_job.delivery = {"mode": "systemEvent"}
        router = DeliveryRouter(enqueue_system_event=MagicMock(side_effect=RuntimeError("queue closed")))

        assert await router.deliver(sample_job, ok_result) is False

    @pytest.mark.asyncio
    async def test_none_mode_does_nothing(self, sample_job, ok_result):
        sample_job.delivery = {"mode": "none"}
        with patch("src.cron.delivery.send_webhook", new_callable=AsyncMock) as mock_send:
            assert await DeliveryRouter().deliver(sample_job, ok_result) is True
            mock_send.assert_not_called()

    @pytest.mark.asyncio
    async def test_wake_now_requests_heartbeat(self, sample_job, ok_result):
        heartbeat = MagicMock()
        sample_job.delivery = {"mode": "none"}
        sample_job.wake_mode = "now"

        await DeliveryRouter(request_heartbeat_now=heartbeat).deliver(sample_job, ok_result)

        heartbeat.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_next_heartbeat_never_wakes(self, sample_job, ok_result):
        heartbeat = MagicMock()
        sample_job.delivery = {"mode": "none"}

        await DeliveryRouter(request_heartbeat_now=heartbeat).deliver(sample_job, ok_result)

        heartbeat.assert_not_called()

    @pytest.mark.asyncio
    async def test_heartbeat_failure_is_logged_not_raised(self, sample_job, ok_result):
        sample_job.delivery = {"mode": "none"}
        sample_job.wake_mode = "now"
        router = DeliveryRouter(request_heartbeat_now=MagicMock(side_effect=RuntimeError("no session")))

        assert await router.deliver(sample_job, ok_result) is True
