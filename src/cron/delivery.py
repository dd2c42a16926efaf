"""
Delivery router for finished cron runs.

Routes a run result to the job's configured delivery:
- webhook:     HTTP POST of the result (best-effort, no retries)
- systemEvent: Hand a summary to the main agent session's event queue
- none:        Drop the result

Jobs with wakeMode "now" additionally request an immediate heartbeat so the
main session handles the event without waiting for its normal cycle.

Delivery never affects scheduling state: every failure is logged and
dropped.
"""

import inspect
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx

from .entities import CronJob, RunResult, WakeMode
from .errors import DeliveryError


logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10.0
WEBHOOK_USER_AGENT = "AgentCron/0.1"


def _json_safe(value: Any) -> Any:
    """Return value if JSON-serializable, else its string form."""
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def build_webhook_payload(job: CronJob, result: RunResult) -> dict:
    """
    Build webhook payload from a finished run.

    Args:
        job: The job after run completion (lastRunAt/nextRunAt updated)
        result: The run result

    Returns:
        Dictionary payload for webhook POST
    """
    return {
        "event": "cron.finished",
        "jobId": job.id,
        "name": job.name,
        "status": result.status,
        "error": result.error,
        "output": _json_safe(result.output),
        "startedAt": result.started_at,
        "finishedAt": result.finished_at,
        "lastRunAt": job.last_run_at,
        "nextRunAt": job.next_run_at,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def build_event_text(job: CronJob, result: RunResult) -> str:
    """One-line summary handed to the system-event sink."""
    if not result.ok:
        return f"[cron] {job.name} failed: {result.error or 'unknown error'}"
    if isinstance(result.output, str) and result.output.strip():
        return f"[cron] {job.name}: {result.output.strip()}"
    return f"[cron] {job.name} completed"


async def send_webhook(
    url: str,
    payload: dict,
    job_id: str,
    token: Optional[str] = None,
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
) -> int:
    """
    POST a payload to a webhook once.

    Args:
        url: Webhook URL to POST to
        payload: JSON body
        job_id: Job the payload belongs to (for headers and errors)
        token: Optional bearer token
        timeout: Request timeout in seconds

    Returns:
        The HTTP status code (always 2xx)

    Raises:
        DeliveryError: On network failure or a non-2xx response
    """
    headers = {
        "Content-Type": "application/json",
        "User-Agent": WEBHOOK_USER_AGENT,
        "X-Cron-Job-ID": job_id,
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise DeliveryError(job_id, url, f"Timeout after {timeout}s") from e
    except httpx.RequestError as e:
        raise DeliveryError(job_id, url, f"Request error: {e}") from e

    if not 200 <= response.status_code < 300:
        raise DeliveryError(job_id, url, f"HTTP {response.status_code}: {response.text[:200]}")

    return response.status_code


async def _call(fn: Callable[..., Any], *args: Any) -> Any:
    """Call a collaborator that may be sync or async."""
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class DeliveryRouter:
    """
    Sends finished runs to their delivery target.

    The legacy process-wide webhook is resolved once here, at construction.
    """

    def __init__(
        self,
        enqueue_system_event: Optional[Callable[[str], Any]] = None,
        request_heartbeat_now: Optional[Callable[[], Any]] = None,
        legacy_webhook: Optional[str] = None,
        webhook_token: Optional[str] = None,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize DeliveryRouter.

        Args:
            enqueue_system_event: Sink for system-event delivery
            request_heartbeat_now: Wakes the main session immediately
            legacy_webhook: Deprecated fallback URL for notify=true jobs without delivery
            webhook_token: Bearer token sent with every webhook POST
            timeout: Webhook request timeout in seconds
            log: Logger (defaults to this module's logger)
        """
        self.enqueue_system_event = enqueue_system_event
        self.request_heartbeat_now = request_heartbeat_now
        self.legacy_webhook = legacy_webhook or None
        self.webhook_token = webhook_token or None
        self.timeout = timeout
        self.log = log or logger

    def resolve_target(self, job: CronJob) -> Optional[dict]:
        """
        Get the effective delivery for a job.

        Per-job delivery wins; the legacy webhook applies only to jobs that
        have none and were stored with notify=true.
        """
        if job.delivery is not None:
            return job.delivery
        if self.legacy_webhook and job.notify:
            return {"mode": "webhook", "to": self.legacy_webhook}
        return None

    async def deliver(self, job: CronJob, result: RunResult) -> bool:
        """
        Deliver a run result. Never raises.

        Returns:
            True if the result reached its target (or there was nothing to do)
        """
        target = self.resolve_target(job)
        delivered = True

        try:
            await self._route(job, result, target)
        except DeliveryError as e:
            self.log.warning(f"Cron delivery dropped: {e}")
            delivered = False

        if job.wake_mode == WakeMode.NOW.value:
            await self._wake(job)

        return delivered

    async def _route(self, job: CronJob, result: RunResult, target: Optional[dict]) -> None:
        mode = target.get("mode") if target else "none"

        if mode == "none":
            return

        if mode == "webhook":
            url = target.get("to")
            if not url:
                raise DeliveryError(job.id, "webhook", "delivery.to is not set")
            status = await send_webhook(
                url,
                build_webhook_payload(job, result),
                job_id=job.id,
                token=self.webhook_token,
                timeout=self.timeout,
            )
            self.log.info(f"Cron webhook delivered for job {job.id} (status={status})")
            return

        if mode == "systemEvent":
            if self.enqueue_system_event is None:
                raise DeliveryError(job.id, "systemEvent", "no system event sink configured")
            try:
                await _call(self.enqueue_system_event, build_event_text(job, result))
            except Exception as e:
                raise DeliveryError(job.id, "systemEvent", str(e)) from e
            self.log.debug(f"Cron system event enqueued for job {job.id}")
            return

        raise DeliveryError(job.id, str(mode), "unknown delivery mode")

    async def _wake(self, job: CronJob) -> None:
        if self.request_heartbeat_now is None:
            self.log.debug(f"Job {job.id} wants an immediate wake but no heartbeat requester is set")
            return
        try:
            await _call(self.request_heartbeat_now)
        except Exception as e:
            self.log.warning(f"Heartbeat request failed for job {job.id}: {e}")
