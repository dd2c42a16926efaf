"""
Cron Test Fixtures.

Base fixtures:
  - Temporary store path
  - Mocked clock at fixed time (epoch ms)
  - Controllable execution backend

Services are built with a one-hour tick interval so the background loop
never fires during a test; tests drive scheduling with service.tick().
"""

import asyncio
from pathlib import Path
from typing import Any, Optional

import pytest

from src.cron import CronConfig, CronJob, CronService


# 2026-01-01T00:00:00Z
FIXED_TIME_MS = 1767225600000

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    """

    def __init__(self, start_ms: int = FIXED_TIME_MS):
        self._current = start_ms

    def __call__(self) -> int:
        return self._current

    def advance(self, ms: int) -> int:
        """Advance time by ms and return the new time."""
        self._current += ms
        return self._current

    def set(self, ms: int) -> None:
        self._current = ms


class FakeBackend:
    """
    Controllable execution backend.

    hold() makes every run block until release() is called, so tests can
    observe jobs while they are RUNNING.
    """

    def __init__(self):
        self.calls: list[str] = []
        self.result: Any = {"status": "ok", "output": "done"}
        self.error: Optional[BaseException] = None
        self.active = 0
        self.max_active = 0
        self._release: Optional[asyncio.Event] = None

    def hold(self) -> None:
        self._release = asyncio.Event()

    def release(self) -> None:
        if self._release is not None:
            self._release.set()

    def fail_with(self, error: BaseException) -> None:
        self.error = error

    async def run(self, job: CronJob) -> Any:
        self.calls.append(job.id)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self._release is not None:
                await self._release.wait()
            if self.error is not None:
                raise self.error
            return self.result
        finally:
            self.active -= 1


def every_spec(name: str = "ping", every_ms: int = MINUTE_MS, **extra: Any) -> dict:
    """Build an 'every' job spec."""
    spec = {
        "name": name,
        "schedule": {"kind": "every", "everyMs": every_ms},
        "payload": {"kind": "systemEvent", "text": f"{name} tick"},
    }
    spec.update(extra)
    return spec


def at_spec(at_ms: int, name: str = "reminder", **extra: Any) -> dict:
    """Build a one-shot 'at' job spec."""
    spec = {
        "name": name,
        "schedule": {"kind": "at", "atMs": at_ms},
        "payload": {"kind": "agentTurn", "message": "remind me"},
    }
    spec.update(extra)
    return spec


async def settle() -> None:
    """Let spawned run tasks progress to their first await."""
    for _ in range(5):
        await asyncio.sleep(0)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store_path(tmp_path: Path) -> Path:
    """Store file inside a not-yet-existing directory."""
    return tmp_path / "cron" / "jobs.json"


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def system_events() -> list:
    return []


@pytest.fixture
def heartbeats() -> list:
    return []


@pytest.fixture
def make_service(store_path, mock_clock, backend, system_events, heartbeats):
    """Factory for services sharing the same store, clock and sinks."""

    def _make(backend_override: Any = None, **config: Any) -> CronService:
        settings = {"tickIntervalSeconds": 3600}
        settings.update(config)
        return CronService(
            backend_override or backend,
            config=CronConfig.load(settings),
            store_path=store_path,
            enqueue_system_event=system_events.append,
            request_heartbeat_now=lambda: heartbeats.append(mock_clock()),
            clock=mock_clock,
        )

    return _make


@pytest.fixture
def service(make_service) -> CronService:
    return make_service()
