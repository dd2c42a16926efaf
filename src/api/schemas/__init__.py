"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .cron import (
    JobResponse,
    JobListResponse,
    JobDeleteResponse,
    JobRunRequest,
    JobRunResponse,
    CronStatusResponse,
    ErrorResponse,
)

__all__ = [
    "JobResponse",
    "JobListResponse",
    "JobDeleteResponse",
    "JobRunRequest",
    "JobRunResponse",
    "CronStatusResponse",
    "ErrorResponse",
]
