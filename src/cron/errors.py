"""
Cron-specific exceptions.

Only ValidationError, JobNotFoundError and CorruptStoreError are raised to
callers of CronService. ExecutionError and DeliveryError are raised inside
the run path, logged, and absorbed there.
"""

from typing import Optional


class CronError(Exception):
    """Base exception for all cron service errors."""
    pass


class ValidationError(CronError):
    """
    Raised when a job spec, patch, or config is malformed.

    Rejected before anything is persisted.
    """

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class JobNotFoundError(CronError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class CorruptStoreError(CronError):
    """
    Raised when the persisted job store cannot be read.

    Fatal to start(). The file is left untouched so no data is lost.
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt cron store at {path}: {reason}")


class ExecutionError(CronError):
    """Raised when the execution backend fails or times out for a run."""

    def __init__(self, job_id: str, reason: str):
        self.job_id = job_id
        self.reason = reason
        super().__init__(f"Execution failed for job {job_id}: {reason}")


class DeliveryError(CronError):
    """Raised when a run result could not be delivered."""

    def __init__(self, job_id: str, target: str, reason: str):
        self.job_id = job_id
        self.target = target
        self.reason = reason
        super().__init__(f"Delivery to {target} failed for job {job_id}: {reason}")
