"""
Dispatcher Tests.

Scheduling properties exercised through the service wiring:
- every / at lifecycles
- Concurrency cap and store-order admission
- Failure, timeout, and stop() handling
"""

import asyncio

import pytest

from src.cron import JobState

from .conftest import FIXED_TIME_MS, HOUR_MS, MINUTE_MS, at_spec, every_spec, settle


class TestEveryLifecycle:
    """Fixed-interval jobs."""

    @pytest.mark.asyncio
    async def test_due_at_first_tick_then_after_interval(self, service, backend):
        job = service.add(every_spec(every_ms=60_000))
        assert job.next_run_at == FIXED_TIME_MS

        assert service.tick() == [job.id]
        await service.wait_idle()

        job = service.get_job(job.id)
        assert job.last_run_at == FIXED_TIME_MS
        assert job.next_run_at == FIXED_TIME_MS + 60_000
        assert job.state == JobState.IDLE
        assert backend.calls == [job.id]

    @pytest.mark.asyncio
    async def test_consecutive_runs_are_at_least_one_interval_apart(self, service, mock_clock):
        job = service.add(every_spec(every_ms=MINUTE_MS))
        run_times = []

        for _ in range(40):
            service.tick()
            await service.wait_idle()
            last = service.get_job(job.id).last_run_at
            if last is not None and (not run_times or run_times[-1] != last):
                run_times.append(last)
            mock_clock.advance(10_000)

        assert len(run_times) >= 5
        gaps = [b - a for a, b in zip(run_times, run_times[1:])]
        assert all(gap >= MINUTE_MS for gap in gaps)

    @pytest.mark.asyncio
    async def test_never_dispatched_while_running(self, service, backend, mock_clock):
        backend.hold()
        job = service.add(every_spec(every_ms=1_000))

        assert service.tick() == [job.id]
        await settle()
        for _ in range(5):
            mock_clock.advance(5_000)
            assert service.tick() == []

        assert backend.calls == [job.id]
        assert service.get_job(job.id).state == JobState.RUNNING

        backend.release()
        await service.wait_idle()
        assert service.get_job(job.id).state == JobState.IDLE

    @pytest.mark.asyncio
    async def test_catch_up_after_downtime_runs_once(self, make_service, backend, mock_clock):
        first = make_service()
        job = first.add(every_spec(every_ms=MINUTE_MS))
        first.tick()
        await first.wait_idle()

        mock_clock.advance(30 * MINUTE_MS)
        second = make_service()
        await second.start()
        try:
            assert second.tick() == [job.id]
            await second.wait_idle()
            assert second.tick() == []

            reloaded = second.get_job(job.id)
            assert reloaded.last_run_at == mock_clock()
            assert reloaded.next_run_at == mock_clock() + MINUTE_MS
            assert len(backend.calls) == 2
        finally:
            second.stop()


class TestAtLifecycle:
    """One-shot jobs."""

    @pytest.mark.asyncio
    async def test_runs_once_then_disabled(self, service, backend, mock_clock):
        job = service.add(at_spec(FIXED_TIME_MS + MINUTE_MS))

        assert service.tick() == []

        mock_clock.advance(MINUTE_MS)
        assert service.tick() == [job.id]
        await service.wait_idle()

        job = service.get_job(job.id)
        assert job.state == JobState.DISABLED
        assert job.enabled is False
        assert job.next_run_at is None
        assert job.last_run_at == FIXED_TIME_MS + MINUTE_MS

        mock_clock.advance(HOUR_MS)
        assert service.tick() == []
        assert backend.calls == [job.id]

    @pytest.mark.asyncio
    async def test_failed_run_still_consumes_one_shot(self, service, backend):
        backend.fail_with(RuntimeError("agent crashed"))
        job = service.add(at_spec(FIXED_TIME_MS))

        service.tick()
        await service.wait_idle()

        assert service.get_job(job.id).state == JobState.DISABLED


class TestConcurrencyCap:
    """ConcurrencyGate admission through ticks."""

    @pytest.mark.asyncio
    async def test_second_due_job_waits_for_free_slot(self, service, backend):
        backend.hold()
        a = service.add(every_spec("a"))
        b = service.add(every_spec("b"))

        assert service.tick() == [a.id]
        assert service.get_job(a.id).state == JobState.RUNNING
        assert service.get_job(b.id).state == JobState.DUE
        assert service.tick() == []

        backend.release()
        await service.wait_idle()

        assert service.tick() == [b.id]
        await service.wait_idle()
        assert backend.calls == [a.id, b.id]
        assert backend.max_active == 1

    @pytest.mark.asyncio
    async def test_running_count_never_exceeds_cap(self, make_service, backend):
        service = make_service(maxConcurrentRuns=2)
        backend.hold()
        jobs = [service.add(every_spec(f"job-{i}")) for i in range(5)]

        assert service.tick() == [jobs[0].id, jobs[1].id]
        await settle()
        assert service.gate.in_flight == 2
        assert [j.state for j in service.list_jobs()].count(JobState.DUE) == 3

        backend.release()
        for _ in range(3):
            await service.wait_idle()
            service.tick()
        await service.wait_idle()

        assert sorted(backend.calls) == sorted(job.id for job in jobs)
        assert backend.max_active == 2
        assert service.gate.in_flight == 0


class TestFailures:
    """Backend failures never break scheduling."""

    @pytest.mark.asyncio
    async def test_rejecting_backend_does_not_prevent_next_run(self, service, backend, mock_clock, system_events):
        backend.fail_with(RuntimeError("agent crashed"))
        job = service.add(every_spec(every_ms=MINUTE_MS, delivery={"mode": "systemEvent"}))

        service.tick()
        await service.wait_idle()

        failed = service.get_job(job.id)
        assert failed.state == JobState.IDLE
        assert failed.last_run_at == FIXED_TIME_MS
        assert failed.next_run_at == FIXED_TIME_MS + MINUTE_MS
        assert system_events == ["[cron] ping failed: RuntimeError: agent crashed"]

        backend.error = None
        mock_clock.advance(MINUTE_MS)
        assert service.tick() == [job.id]
        await service.wait_idle()
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_error_status_result(self, service, backend, system_events):
        backend.result = {"status": "error", "error": "quota exceeded"}
        service.add(every_spec(delivery={"mode": "systemEvent"}))

        service.tick()
        await service.wait_idle()

        assert system_events == ["[cron] ping failed: quota exceeded"]

    @pytest.mark.asyncio
    async def test_hung_backend_times_out(self, make_service, backend, system_events):
        service = make_service(runTimeoutSeconds=0.01)
        backend.hold()
        job = service.add(every_spec(delivery={"mode": "systemEvent"}))

        service.tick()
        await service.wait_idle()

        assert service.get_job(job.id).state == JobState.IDLE
        assert service.gate.in_flight == 0
        assert system_events == ["[cron] ping failed: timed out after 0.01s"]


class TestStop:
    """stop() while runs are in flight."""

    @pytest.mark.asyncio
    async def test_completion_after_stop_is_discarded(self, service, backend, system_events):
        await service.start()
        backend.hold()
        job = service.add(every_spec(delivery={"mode": "systemEvent"}))
        service.tick()
        await settle()

        service.stop()
        backend.release()
        await service.wait_idle()

        assert service.gate.in_flight == 0
        assert service.get_job(job.id).last_run_at is None
        assert system_events == []

    @pytest.mark.asyncio
    async def test_restart_reruns_interrupted_job(self, make_service, backend):
        first = make_service()
        await first.start()
        backend.hold()
        job = first.add(every_spec())
        first.tick()
        await settle()
        first.stop()
        backend.release()
        await first.wait_idle()

        second = make_service()
        await second.start()
        try:
            recovered = second.get_job(job.id)
            assert recovered.state == JobState.IDLE
            assert recovered.next_run_at == FIXED_TIME_MS

            assert second.tick() == [job.id]
            await second.wait_idle()
            assert len(backend.calls) == 2
        finally:
            second.stop()


class TestTickLoop:
    """The background loop dispatches without manual ticks."""

    @pytest.mark.asyncio
    async def test_loop_dispatches_due_jobs(self, make_service, backend):
        service = make_service(tickIntervalSeconds=0.01)
        job = service.add(every_spec())

        await service.start()
        try:
            for _ in range(100):
                if backend.calls:
                    break
                await asyncio.sleep(0.01)
            await service.wait_idle()
        finally:
            service.stop()

        assert backend.calls[0] == job.id
