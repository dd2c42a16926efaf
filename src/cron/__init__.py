"""
Cron Scheduler Core Module.

Persistent scheduler for recurring and one-shot agent jobs:
- Durable JSON job store
- Schedule calculation (every / at / cron)
- Bounded concurrent dispatch to an injected execution backend
- Result delivery (webhook / system event / heartbeat wake)
"""

from .entities import (
    JobState,
    SessionTarget,
    WakeMode,
    CronJob,
    RunResult,
    now_ms,
)
from .errors import (
    CronError,
    ValidationError,
    JobNotFoundError,
    CorruptStoreError,
    ExecutionError,
    DeliveryError,
)
from .schedule import next_due, parse_at_ms, validate_cron_expr
from .schemas import validate_job_spec, validate_job_patch, PATCHABLE_FIELDS
from .store import JobStore
from .gate import ConcurrencyGate
from .backend import ExecutionBackend, CallableBackend, as_backend
from .delivery import DeliveryRouter, send_webhook
from .dispatcher import Dispatcher, DispatcherState
from .config import CronConfig
from .service import CronService

__all__ = [
    # Entities
    "JobState",
    "SessionTarget",
    "WakeMode",
    "CronJob",
    "RunResult",
    "now_ms",
    # Errors
    "CronError",
    "ValidationError",
    "JobNotFoundError",
    "CorruptStoreError",
    "ExecutionError",
    "DeliveryError",
    # Schedule
    "next_due",
    "parse_at_ms",
    "validate_cron_expr",
    # Validation
    "validate_job_spec",
    "validate_job_patch",
    "PATCHABLE_FIELDS",
    # Store
    "JobStore",
    # Gate
    "ConcurrencyGate",
    # Backend
    "ExecutionBackend",
    "CallableBackend",
    "as_backend",
    # Delivery
    "DeliveryRouter",
    "send_webhook",
    # Dispatcher
    "Dispatcher",
    "DispatcherState",
    # Config
    "CronConfig",
    # Service
    "CronService",
]
