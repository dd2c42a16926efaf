"""
Cron router for job management and service control.

Endpoints under /cron/*:
- GET    /cron/status           Service status
- GET    /cron/jobs             List jobs
- POST   /cron/jobs             Create job
- GET    /cron/jobs/{job_id}    Get job
- PATCH  /cron/jobs/{job_id}    Update job
- DELETE /cron/jobs/{job_id}    Remove job
- POST   /cron/jobs/{job_id}/run  Run job now

All handlers are async so service calls stay on the event loop that owns
the dispatcher. ValidationError and JobNotFoundError are mapped to 422/404
by the handlers registered in create_app().
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, status

from src.cron.errors import JobNotFoundError
from src.cron.service import CronService

from ..dependencies.cron import get_cron_service
from ..schemas.cron import (
    CronStatusResponse,
    JobDeleteResponse,
    JobListResponse,
    JobResponse,
    JobRunRequest,
    JobRunResponse,
)


router = APIRouter()


@router.get("/status", response_model=CronStatusResponse)
async def get_status(service: CronService = Depends(get_cron_service)):
    """Get cron service status."""
    return CronStatusResponse.model_validate(service.status())


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    include_disabled: bool = Query(default=True, alias="includeDisabled"),
    service: CronService = Depends(get_cron_service),
):
    """List jobs in dispatch order."""
    jobs = service.list_jobs(include_disabled=include_disabled)
    return JobListResponse(
        jobs=[JobResponse.from_job(job) for job in jobs],
        total=len(jobs),
    )


@router.post("/jobs", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(
    spec: Dict[str, Any] = Body(...),
    service: CronService = Depends(get_cron_service),
):
    """
    Create a job.

    Body: {name, schedule, payload, enabled?, sessionTarget?, wakeMode?, delivery?}
    """
    job = service.add(spec)
    return JobResponse.from_job(job)


@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, service: CronService = Depends(get_cron_service)):
    """Get a job by ID."""
    job = service.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return JobResponse.from_job(job)


@router.patch("/jobs/{job_id}", response_model=JobResponse)
async def update_job(
    job_id: str,
    patch: Dict[str, Any] = Body(...),
    service: CronService = Depends(get_cron_service),
):
    """Patch a job's name, enabled, schedule, sessionTarget, wakeMode, payload or delivery."""
    job = service.update(job_id, patch)
    return JobResponse.from_job(job)


@router.delete("/jobs/{job_id}", response_model=JobDeleteResponse)
async def delete_job(job_id: str, service: CronService = Depends(get_cron_service)):
    """Remove a job. A running job finishes but is not rescheduled."""
    if not service.remove(job_id):
        raise JobNotFoundError(job_id)
    return JobDeleteResponse(job_id=job_id, removed=True)


@router.post("/jobs/{job_id}/run", response_model=JobRunResponse)
async def run_job(
    job_id: str,
    request: JobRunRequest = JobRunRequest(),
    service: CronService = Depends(get_cron_service),
):
    """
    Run a job now and wait for the result.

    Returns ran=false with a reason when the job is not due (mode=due),
    already running, or the concurrency gate is full.
    """
    result = await service.run(job_id, mode=request.mode)
    return JobRunResponse(**result)
