"""
Dispatcher for the cron service.

- Ticks on a fixed period and selects due, enabled jobs
- Admits them through the ConcurrencyGate in store order
- Runs each admitted job as its own asyncio task (the tick never waits on a run)
- Folds the run result back into the job and hands it to the DeliveryRouter

What Dispatcher MUST NOT do:
- Interpret job payloads
- Retry failed runs (the next scheduled occurrence is the retry)
- Cancel in-flight runs on stop (they finish; their results are discarded)
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .backend import ExecutionBackend
from .delivery import DeliveryRouter
from .entities import CronJob, JobState, RunResult, now_ms
from .errors import ExecutionError, ValidationError
from .gate import ConcurrencyGate
from .schedule import next_due
from .store import JobStore


logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    """Dispatcher lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


class Dispatcher:
    """
    Periodic tick that dispatches due jobs.

    Per tick:
    1. Snapshot enabled, non-running jobs with nextRunAt <= now
    2. In store order, try the gate; admitted jobs go RUNNING and are
       spawned, denied jobs are marked DUE for the next tick
    3. On completion: release the slot, update lastRunAt/nextRunAt/state,
       persist, deliver

    Completions are tagged with the epoch they were dispatched in. stop()
    bumps the epoch so runs finishing afterwards are neither persisted nor
    delivered.
    """

    def __init__(
        self,
        store: JobStore,
        gate: ConcurrencyGate,
        backend: ExecutionBackend,
        router: DeliveryRouter,
        persist: Callable[[], None],
        clock: Callable[[], int] = now_ms,
        tick_interval: float = 1.0,
        run_timeout: Optional[float] = 600.0,
        log: Optional[logging.Logger] = None,
    ):
        """
        Initialize Dispatcher.

        Args:
            store: Job store (owned by CronService)
            gate: Concurrency gate
            backend: Execution backend that runs jobs
            router: Delivery router for finished runs
            persist: Callback that flushes the store (CronService's writer)
            clock: Returns current time in epoch ms
            tick_interval: Seconds between ticks
            run_timeout: Seconds before a run is failed as timed out (None = never)
            log: Logger (defaults to this module's logger)
        """
        self.store = store
        self.gate = gate
        self.backend = backend
        self.router = router
        self.persist = persist
        self.clock = clock
        self.tick_interval = tick_interval
        self.run_timeout = run_timeout
        self.log = log or logger

        self._state = DispatcherState.STOPPED
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._runs: dict[str, asyncio.Task] = {}
        self._epoch = 0

    @property
    def state(self) -> DispatcherState:
        """Get current dispatcher state."""
        return self._state

    @property
    def in_flight(self) -> list[str]:
        """IDs of jobs currently executing."""
        return list(self._runs)

    def is_running(self) -> bool:
        """Check if the tick loop is armed."""
        return self._state == DispatcherState.RUNNING

    # =========================================================================
    # Tick
    # =========================================================================

    def is_due(self, job: CronJob, now: int) -> bool:
        return (
            job.enabled
            and job.state != JobState.RUNNING
            and job.id not in self._runs
            and job.next_run_at is not None
            and job.next_run_at <= now
        )

    def tick(self, now: Optional[int] = None) -> list[str]:
        """
        Run one scheduling pass.

        Must be called from a running event loop.

        Args:
            now: Override current time (epoch ms)

        Returns:
            IDs of jobs dispatched in this tick, in dispatch order
        """
        now = self.clock() if now is None else now
        due = [job for job in self.store.list() if self.is_due(job, now)]
        if not due:
            return []

        dispatched = []
        changed = False

        for job in due:
            if self.gate.try_acquire():
                self._begin(job, now)
                dispatched.append(job.id)
                changed = True
            elif job.state != JobState.DUE:
                job.state = JobState.DUE
                changed = True

        if changed:
            self.persist()

        deferred = len(due) - len(dispatched)
        if deferred:
            self.log.debug(
                f"Cron gate full ({self.gate.in_flight}/{self.gate.max_concurrent_runs}), "
                f"{deferred} due job(s) deferred"
            )

        return dispatched

    def dispatch(self, job: CronJob, now: Optional[int] = None) -> Optional[asyncio.Task]:
        """
        Dispatch a single job regardless of its due time.

        Used for manual runs. Still honors the gate and the running check.

        Returns:
            The run task, or None if the job is running or the gate is full
        """
        if job.state == JobState.RUNNING or job.id in self._runs:
            return None
        if not self.gate.try_acquire():
            return None

        now = self.clock() if now is None else now
        task = self._begin(job, now)
        self.persist()
        return task

    def _begin(self, job: CronJob, now: int) -> asyncio.Task:
        job.state = JobState.RUNNING
        self.log.info(f"Dispatching cron job {job.id} ({job.name})")
        task = asyncio.create_task(
            self._run_job(job, now, self._epoch),
            name=f"cron-run-{job.id}",
        )
        self._runs[job.id] = task
        return task

    # =========================================================================
    # Run Lifecycle
    # =========================================================================

    async def _run_job(self, job: CronJob, started_at: int, epoch: int) -> RunResult:
        released = False
        try:
            result = await self._execute(job)
            result.started_at = started_at
            result.finished_at = self.clock()

            self.gate.release()
            released = True
            self._runs.pop(job.id, None)

            target = self._finish(job, result, epoch)
            if target is not None:
                await self.router.deliver(target, result)
            return result

        finally:
            if not released:
                self.gate.release()
            self._runs.pop(job.id, None)

    async def _execute(self, job: CronJob) -> RunResult:
        """Call the backend; failures and timeouts become error results."""
        try:
            if self.run_timeout is None:
                value = await self.backend.run(job)
            else:
                value = await asyncio.wait_for(self.backend.run(job), timeout=self.run_timeout)
            result = RunResult.coerce(value)

        except asyncio.TimeoutError:
            error = ExecutionError(job.id, f"timed out after {self.run_timeout}s")
            self.log.warning(str(error))
            return RunResult.failed(error.reason)

        except Exception as e:
            error = ExecutionError(job.id, f"{type(e).__name__}: {e}")
            self.log.warning(str(error))
            return RunResult.failed(error.reason)

        if not result.ok:
            self.log.warning(f"Cron job {job.id} finished with error: {result.error}")
        return result

    def _finish(self, job: CronJob, result: RunResult, epoch: int) -> Optional[CronJob]:
        """
        Fold a finished run into the store.

        Returns:
            The job to deliver for, or None if the result must be discarded
        """
        if epoch != self._epoch:
            self.log.info(
                f"Cron job {job.id} finished after the service stopped; result discarded"
            )
            return None

        current = self.store.get(job.id)
        if current is None:
            self.log.info(f"Cron job {job.id} was removed while running; not rescheduled")
            return job

        finished_at = result.finished_at
        current.last_run_at = finished_at

        if current.is_one_shot or not current.enabled:
            current.enabled = False
            current.state = JobState.DISABLED
            current.next_run_at = None
        else:
            try:
                current.next_run_at = next_due(current.schedule, finished_at, finished_at)
                current.state = JobState.IDLE
            except ValidationError as e:
                self.log.error(f"Cron job {current.id} has an unusable schedule, disabling: {e}")
                current.enabled = False
                current.state = JobState.DISABLED
                current.next_run_at = None

        try:
            self.persist()
        except (OSError, TypeError, ValueError) as e:
            self.log.error(f"Failed to persist cron store after job {current.id}: {e}")

        self.log.info(
            f"Cron job {current.id} completed with status {result.status} "
            f"(nextRunAt={current.next_run_at})"
        )
        return current

    # =========================================================================
    # Tick Loop
    # =========================================================================

    def start(self) -> None:
        """
        Arm the tick loop. Idempotent.

        Must be called from a running event loop.
        """
        if self._state == DispatcherState.RUNNING:
            return

        self._stop_event = asyncio.Event()
        self._state = DispatcherState.RUNNING
        self._task = asyncio.create_task(self._tick_loop(), name="cron-tick-loop")
        self.log.info(f"Cron dispatcher started (tick every {self.tick_interval}s)")

    def stop(self) -> None:
        """
        Halt future ticks.

        In-flight runs keep going; their completions are discarded.
        """
        self._epoch += 1

        if self._state == DispatcherState.STOPPED:
            return

        self._state = DispatcherState.STOPPED
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            self._task = None

        self.log.info("Cron dispatcher stopped")

    async def _tick_loop(self) -> None:
        """Main tick loop."""
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.tick_interval)
                break
            except asyncio.TimeoutError:
                pass

            try:
                self.tick()
            except Exception as e:
                self.log.error(f"Error in cron tick: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait until no runs are in flight."""
        while self._runs:
            await asyncio.gather(*list(self._runs.values()), return_exceptions=True)
