"""
Cron Domain Entities.

- CronJob: A named, independently schedulable unit
- JobState: Scheduling state of a job
- RunResult: Ephemeral outcome of a single dispatch

Jobs are persisted with camelCase keys (see to_dict/from_dict) so the store
file stays compatible with other tools reading the same cron store.
"""

import copy
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class JobState(str, Enum):
    """
    Job scheduling state.

    - IDLE: Waiting for nextRunAt
    - DUE: nextRunAt has passed but the concurrency gate denied admission
    - RUNNING: Handed to the execution backend
    - DISABLED: Never selected as due
    """

    IDLE = "idle"
    DUE = "due"
    RUNNING = "running"
    DISABLED = "disabled"


class SessionTarget(str, Enum):
    """Which execution context receives a run."""

    MAIN = "main"
    ISOLATED = "isolated"


class WakeMode(str, Enum):
    """Whether a finished run should wake the main session immediately."""

    NEXT_HEARTBEAT = "next-heartbeat"
    NOW = "now"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_ms() -> int:
    """Get current time as epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class CronJob:
    """
    A scheduled job.

    Mutability rules:
    - id: Immutable
    - name, enabled, schedule, session_target, wake_mode, payload, delivery,
      notify: Mutable through CronService.update()
    - last_run_at, next_run_at, state: Written by the dispatcher (and
      recomputed by the service when schedule/enabled change)

    schedule, payload and delivery are kept as the JSON objects the caller
    supplied so they survive a storage round-trip unmodified.
    """

    id: str
    name: str
    schedule: dict
    payload: dict
    enabled: bool = True
    session_target: str = SessionTarget.MAIN.value
    wake_mode: str = WakeMode.NEXT_HEARTBEAT.value
    delivery: Optional[dict] = None
    notify: bool = False
    last_run_at: Optional[int] = None
    next_run_at: Optional[int] = None
    state: JobState = JobState.IDLE

    @classmethod
    def create(
        cls,
        name: str,
        schedule: dict,
        payload: dict,
        enabled: bool = True,
        session_target: str = SessionTarget.MAIN.value,
        wake_mode: str = WakeMode.NEXT_HEARTBEAT.value,
        delivery: Optional[dict] = None,
        notify: bool = False,
    ) -> "CronJob":
        """Create a new CronJob with generated ID."""
        return cls(
            id=generate_uuid(),
            name=name,
            schedule=schedule,
            payload=payload,
            enabled=enabled,
            session_target=session_target,
            wake_mode=wake_mode,
            delivery=delivery,
            notify=notify,
            state=JobState.IDLE if enabled else JobState.DISABLED,
        )

    @property
    def is_one_shot(self) -> bool:
        return self.schedule.get("kind") == "at"

    @property
    def is_running(self) -> bool:
        return self.state == JobState.RUNNING

    def to_dict(self) -> dict:
        """Convert job to its on-disk dictionary form."""
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "schedule": copy.deepcopy(self.schedule),
            "sessionTarget": self.session_target,
            "wakeMode": self.wake_mode,
            "payload": copy.deepcopy(self.payload),
            "delivery": copy.deepcopy(self.delivery),
            "notify": self.notify,
            "lastRunAt": self.last_run_at,
            "nextRunAt": self.next_run_at,
            "state": self.state.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CronJob":
        """
        Create job from its on-disk dictionary form.

        Raises:
            KeyError: If a required field is missing
            ValueError: If state is not a known JobState
            TypeError: If a field has the wrong JSON type
        """
        name = data["name"]
        if not isinstance(name, str) or not name:
            raise TypeError("name must be a non-empty string")

        schedule = data["schedule"]
        payload = data["payload"]
        if not isinstance(schedule, dict) or not isinstance(payload, dict):
            raise TypeError("schedule and payload must be objects")

        delivery = data.get("delivery")
        if delivery is not None and not isinstance(delivery, dict):
            raise TypeError("delivery must be an object or null")

        enabled = data.get("enabled", True)
        notify = data.get("notify", False)
        if not isinstance(enabled, bool) or not isinstance(notify, bool):
            raise TypeError("enabled and notify must be booleans")

        return cls(
            id=str(data["id"]),
            name=name,
            schedule=schedule,
            payload=payload,
            enabled=enabled,
            session_target=data.get("sessionTarget", SessionTarget.MAIN.value),
            wake_mode=data.get("wakeMode", WakeMode.NEXT_HEARTBEAT.value),
            delivery=delivery,
            notify=notify,
            last_run_at=data.get("lastRunAt"),
            next_run_at=data.get("nextRunAt"),
            state=JobState(data.get("state", JobState.IDLE.value)),
        )


@dataclass
class RunResult:
    """
    Outcome of a single dispatch, produced by the execution backend.

    Not persisted; folded into the job's lastRunAt/state and forwarded to
    the delivery router.
    """

    status: str  # "ok" | "error"
    error: Optional[str] = None
    output: Any = None
    started_at: Optional[int] = None
    finished_at: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    @classmethod
    def failed(cls, error: str) -> "RunResult":
        return cls(status="error", error=error)

    @classmethod
    def coerce(cls, value: Any) -> "RunResult":
        """
        Normalize whatever a backend returned into a RunResult.

        Accepts a RunResult, a dict shaped like {"status", "error", "output"},
        or any other value (treated as a successful run's output).
        """
        if isinstance(value, RunResult):
            return value

        if isinstance(value, dict) and "status" in value:
            status = "ok" if value.get("status") == "ok" else "error"
            error = value.get("error")
            if status == "error" and not error:
                error = f"Backend reported status {value.get('status')!r}"
            return cls(status=status, error=error, output=value.get("output"))

        return cls(status="ok", output=value)
