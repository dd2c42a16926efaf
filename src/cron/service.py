"""
Cron Service - Main entry point for the cron scheduler.

This service orchestrates all cron components:
- JobStore (durable job table)
- ConcurrencyGate (admission control)
- Dispatcher (tick loop and run lifecycle)
- DeliveryRouter (run result delivery)

It is the single writer of the job store: every mutation, including the
dispatcher's run-state updates, is flushed through CronService._persist().

Usage:
    service = CronService.create(backend, enqueue_system_event=..., request_heartbeat_now=...)
    await service.start()
    job = service.add({"name": "ping", "schedule": {"kind": "every", "everyMs": 60000},
                       "payload": {"kind": "systemEvent", "text": "ping"}})
    ...
    service.stop()
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from .backend import as_backend
from .config import CronConfig
from .delivery import DeliveryRouter
from .dispatcher import Dispatcher
from .entities import CronJob, JobState, now_ms
from .errors import JobNotFoundError, ValidationError
from .gate import ConcurrencyGate
from .schedule import next_due
from .schemas import validate_job_patch, validate_job_spec
from .store import JobStore


logger = logging.getLogger(__name__)

RUN_MODES = ("force", "due")


class CronService:
    """
    Facade over the cron scheduler.

    Provides:
    - Component wiring
    - Startup with crash recovery of jobs left RUNNING
    - Shutdown that lets in-flight runs finish unrecorded
    - CRUD, manual run, and status operations
    """

    def __init__(
        self,
        backend: Any,
        config: Optional[CronConfig] = None,
        store_path: Optional[str | Path] = None,
        enqueue_system_event: Optional[Callable[[str], Any]] = None,
        request_heartbeat_now: Optional[Callable[[], Any]] = None,
        clock: Callable[[], int] = now_ms,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize CronService.

        Args:
            backend: ExecutionBackend, or an async function taking the job
            config: Service settings (defaults to CronConfig())
            store_path: Overrides config.store
            enqueue_system_event: Sink for systemEvent delivery
            request_heartbeat_now: Wakes the main session for wakeMode "now"
            clock: Returns current time in epoch ms
            log: Logger (defaults to this module's logger)
        """
        self.config = config or CronConfig()
        self.store_path = Path(store_path) if store_path else self.config.store_path
        self.clock = clock
        self.log = log or logger

        self.store = JobStore(self.store_path)
        self.gate = ConcurrencyGate(self.config.max_concurrent_runs)
        self.router = DeliveryRouter(
            enqueue_system_event=enqueue_system_event,
            request_heartbeat_now=request_heartbeat_now,
            legacy_webhook=self.config.webhook,
            webhook_token=self.config.webhook_token,
            log=self.log,
        )
        self.dispatcher = Dispatcher(
            store=self.store,
            gate=self.gate,
            backend=as_backend(backend),
            router=self.router,
            persist=self._persist,
            clock=clock,
            tick_interval=self.config.tick_interval_seconds,
            run_timeout=self.config.run_timeout_seconds,
            log=self.log,
        )

        self._started = False

    @classmethod
    def create(
        cls,
        backend: Any,
        config: Optional[CronConfig | dict] = None,
        **kwargs: Any,
    ) -> "CronService":
        """
        Create a CronService, reading config from the environment if none is given.

        Args:
            backend: ExecutionBackend or async function
            config: CronConfig, a config dict, or None for CronConfig.from_env()
            **kwargs: Passed through to __init__

        Returns:
            Configured CronService
        """
        if config is None:
            config = CronConfig.from_env()
        elif isinstance(config, dict):
            config = CronConfig.load(config)
        return cls(backend, config=config, **kwargs)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Load the store and arm the dispatcher. Idempotent.

        Raises:
            CorruptStoreError: If the store file cannot be read
        """
        if self._started:
            return

        self.store.load()
        self._recover(self.clock())
        self._started = True

        if not self.config.enabled:
            self.log.info("cron: disabled; jobs will not run automatically")
            return

        self.dispatcher.start()
        self.log.info(
            f"cron: started (jobs={len(self.store)}, nextWakeAt={self._next_wake_at()})"
        )

    def stop(self) -> None:
        """
        Cancel the tick timer.

        In-flight runs are not cancelled; when they finish their results are
        neither persisted nor delivered.
        """
        self.dispatcher.stop()
        if not self._started:
            return
        self._started = False
        self.log.info("cron: stopped")

    @property
    def is_running(self) -> bool:
        """Check if the service is started and ticking."""
        return self._started and self.dispatcher.is_running()

    def _recover(self, now: int) -> None:
        """
        Re-evaluate due state after a (re)load.

        Jobs left RUNNING by a crash go back to IDLE with their nextRunAt
        intact, so they run again (at-least-once). Persisted nextRunAt values
        are otherwise kept as-is.
        """
        changed = False

        for job in self.store.list():
            if job.state == JobState.RUNNING:
                self.log.warning(f"Cron job {job.id} was running at last shutdown; it will run again")
                job.state = JobState.IDLE
                changed = True

            if not job.enabled:
                if job.state != JobState.DISABLED or job.next_run_at is not None:
                    job.state = JobState.DISABLED
                    job.next_run_at = None
                    changed = True
                continue

            if job.state == JobState.DISABLED:
                job.state = JobState.IDLE
                changed = True

            if job.next_run_at is None:
                try:
                    job.next_run_at = next_due(job.schedule, job.last_run_at, now)
                except ValidationError as e:
                    self.log.error(f"Cron job {job.id} has an unusable schedule: {e}")
                    job.next_run_at = None
                if job.next_run_at is None:
                    job.enabled = False
                    job.state = JobState.DISABLED
                changed = True

        if changed:
            self._persist()

    def _persist(self) -> None:
        self.store.save()

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Persist the changes made inside the block, or roll them back if saving fails."""
        snapshot = self.store.snapshot()
        try:
            yield
            self._persist()
        except Exception:
            self.store.restore(snapshot)
            raise

    def _ensure_loaded(self) -> None:
        if not self.store.loaded:
            self.store.load()
            self._recover(self.clock())

    # =========================================================================
    # Job Operations
    # =========================================================================

    def add(self, spec: dict) -> CronJob:
        """
        Create a job.

        Args:
            spec: Job fields (name, schedule, payload, and optionally enabled,
                  sessionTarget, wakeMode, delivery, notify)

        Returns:
            The created CronJob

        Raises:
            ValidationError: If the job spec is malformed
        """
        self._ensure_loaded()
        fields = validate_job_spec(spec)

        job = CronJob.create(
            name=fields["name"],
            schedule=fields["schedule"],
            payload=fields["payload"],
            enabled=fields["enabled"],
            session_target=fields["sessionTarget"],
            wake_mode=fields["wakeMode"],
            delivery=fields["delivery"],
            notify=fields["notify"],
        )
        if job.enabled:
            job.next_run_at = next_due(job.schedule, None, self.clock())

        with self._mutation():
            self.store.upsert(job)

        self.log.info(f"Added cron job {job.id} ({job.name}, nextRunAt={job.next_run_at})")
        return job

    def get_job(self, job_id: str) -> Optional[CronJob]:
        """Get a job by ID."""
        self._ensure_loaded()
        return self.store.get(job_id)

    def list_jobs(self, include_disabled: bool = True) -> list[CronJob]:
        """List jobs in store (dispatch) order."""
        self._ensure_loaded()
        jobs = self.store.list()
        if not include_disabled:
            jobs = [job for job in jobs if job.enabled]
        return jobs

    def update(self, job_id: str, patch: dict) -> CronJob:
        """
        Patch a job.

        Changing schedule or enabled recomputes nextRunAt. A running job
        stays RUNNING; its completion recomputes again.

        Raises:
            ValidationError: If the patch is malformed
            JobNotFoundError: If the job does not exist
        """
        self._ensure_loaded()
        changes = validate_job_patch(patch)

        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        enabled = changes.get("enabled", job.enabled)
        schedule = changes.get("schedule", job.schedule)
        reschedule = "enabled" in changes or "schedule" in changes

        next_run_at = job.next_run_at
        if reschedule:
            next_run_at = next_due(schedule, job.last_run_at, self.clock()) if enabled else None
            if enabled and next_run_at is None:
                raise ValidationError(
                    f"Job {job_id} one-shot schedule has already fired; set a new 'at' to re-enable it"
                )

        with self._mutation():
            if "name" in changes:
                job.name = changes["name"]
            if "payload" in changes:
                job.payload = changes["payload"]
            if "sessionTarget" in changes:
                job.session_target = changes["sessionTarget"]
            if "wakeMode" in changes:
                job.wake_mode = changes["wakeMode"]
            if "delivery" in changes:
                job.delivery = changes["delivery"]
            if "notify" in changes:
                job.notify = changes["notify"]

            if reschedule:
                job.enabled = enabled
                job.schedule = schedule
                job.next_run_at = next_run_at
                if job.state != JobState.RUNNING:
                    job.state = JobState.IDLE if enabled else JobState.DISABLED

        self.log.info(f"Updated cron job {job_id} ({', '.join(sorted(changes)) or 'no changes'})")
        return job

    def remove(self, job_id: str) -> bool:
        """
        Delete a job.

        A running job finishes but is not scheduled again.

        Returns:
            True if the job existed
        """
        self._ensure_loaded()
        if job_id not in self.store:
            return False

        with self._mutation():
            self.store.delete(job_id)
        self.log.info(f"Removed cron job {job_id}")
        return True

    async def run(self, job_id: str, mode: str = "force") -> dict:
        """
        Run a job now and wait for it to finish.

        Args:
            job_id: Job to run
            mode: "force" runs regardless of due time, "due" only if due

        Returns:
            {"ok": True, "ran": bool, "reason"?: str, "status"?: str, "error"?: str}

        Raises:
            ValidationError: If mode is unknown
            JobNotFoundError: If the job does not exist
        """
        if mode not in RUN_MODES:
            raise ValidationError(f"Unknown run mode: {mode!r}")

        self._ensure_loaded()
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        now = self.clock()
        if job.state == JobState.RUNNING or job_id in self.dispatcher.in_flight:
            return {"ok": True, "ran": False, "reason": "already-running"}
        if mode == "due" and not self.dispatcher.is_due(job, now):
            return {"ok": True, "ran": False, "reason": "not-due"}

        task = self.dispatcher.dispatch(job, now)
        if task is None:
            return {"ok": True, "ran": False, "reason": "busy"}

        result = await task
        response = {"ok": True, "ran": True, "status": result.status}
        if result.error:
            response["error"] = result.error
        return response

    # =========================================================================
    # Scheduling Passthroughs
    # =========================================================================

    def tick(self, now: Optional[int] = None) -> list[str]:
        """Run one scheduling pass immediately."""
        self._ensure_loaded()
        return self.dispatcher.tick(now)

    async def wait_idle(self) -> None:
        """Wait for every in-flight run to finish."""
        await self.dispatcher.wait_idle()

    # =========================================================================
    # Status
    # =========================================================================

    def _next_wake_at(self) -> Optional[int]:
        times = [
            job.next_run_at
            for job in self.store.list()
            if job.enabled and job.next_run_at is not None
        ]
        return min(times) if times else None

    def status(self) -> dict:
        """
        Get service status.

        Returns:
            Dict with enabled, started, storePath, jobs, running,
            maxConcurrentRuns, nextWakeAt
        """
        self._ensure_loaded()
        return {
            "enabled": self.config.enabled,
            "started": self.is_running,
            "storePath": str(self.store_path),
            "jobs": len(self.store),
            "running": self.gate.in_flight,
            "maxConcurrentRuns": self.gate.max_concurrent_runs,
            "nextWakeAt": self._next_wake_at() if self.config.enabled else None,
        }
