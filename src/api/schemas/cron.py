"""
Cron API schemas.

Response models mirror the persisted job shape (camelCase on the wire).
Request bodies for create/update are validated by the service itself, so
the HTTP layer and in-process callers get identical errors.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.cron.entities import CronJob


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Job Schemas
# =============================================================================


class JobResponse(_CamelModel):
    """Response representing a cron job."""

    id: str = Field(..., description="Unique job identifier")
    name: str = Field(..., description="Human label")
    enabled: bool = Field(..., description="Disabled jobs are never dispatched")
    schedule: dict = Field(..., description="Schedule object (every / at / cron)")
    session_target: str = Field(..., alias="sessionTarget", description="main or isolated")
    wake_mode: str = Field(..., alias="wakeMode", description="next-heartbeat or now")
    payload: dict = Field(..., description="Opaque payload handed to the execution backend")
    delivery: Optional[dict] = Field(default=None, description="Result delivery target")
    notify: bool = Field(default=False, description="Use the legacy webhook when no delivery is set")
    last_run_at: Optional[int] = Field(default=None, alias="lastRunAt", description="Last completion (epoch ms)")
    next_run_at: Optional[int] = Field(default=None, alias="nextRunAt", description="Next due time (epoch ms)")
    state: str = Field(..., description="idle / due / running / disabled")

    @classmethod
    def from_job(cls, job: CronJob) -> "JobResponse":
        return cls.model_validate(job.to_dict())


class JobListResponse(BaseModel):
    """Response for job list endpoint."""

    jobs: List[JobResponse] = Field(default_factory=list)
    total: int = Field(..., description="Number of jobs returned")


class JobDeleteResponse(_CamelModel):
    """Response from job deletion."""

    job_id: str = Field(..., alias="jobId")
    removed: bool


# =============================================================================
# Run Schemas
# =============================================================================


class JobRunRequest(BaseModel):
    """Request to run a job immediately."""

    mode: Literal["force", "due"] = Field(
        default="force",
        description="'force' runs regardless of due time, 'due' only if due",
    )


class JobRunResponse(BaseModel):
    """Outcome of a manual run."""

    ok: bool
    ran: bool
    reason: Optional[str] = Field(default=None, description="not-due / already-running / busy")
    status: Optional[str] = Field(default=None, description="ok / error when ran")
    error: Optional[str] = None


# =============================================================================
# Status Schemas
# =============================================================================


class CronStatusResponse(_CamelModel):
    """Service status."""

    enabled: bool
    started: bool
    store_path: str = Field(..., alias="storePath")
    jobs: int
    running: int = Field(..., description="Runs currently in flight")
    max_concurrent_runs: int = Field(..., alias="maxConcurrentRuns")
    next_wake_at: Optional[int] = Field(default=None, alias="nextWakeAt")


class ErrorResponse(BaseModel):
    """Error body for 404/422 responses."""

    detail: str
    errors: List[Any] = Field(default_factory=list)
