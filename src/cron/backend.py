"""
Execution backend interface.

The scheduler never inspects a job's payload; it hands the whole job to a
backend and waits for a RunResult. The agent runtime supplies the backend.
"""

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from .entities import CronJob


@runtime_checkable
class ExecutionBackend(Protocol):
    """Protocol for the component that actually runs a job."""

    async def run(self, job: CronJob) -> Any:
        """
        Execute a job.

        Args:
            job: The job to execute (payload is opaque to the scheduler)

        Returns:
            A RunResult, or a dict like {"status": "ok"|"error", "error": ..., "output": ...}

        Raises:
            Exception: Any failure; the dispatcher records it as status "error"
        """
        ...


class CallableBackend:
    """Adapts a bare async function `fn(job)` to ExecutionBackend."""

    def __init__(self, fn: Callable[[CronJob], Awaitable[Any]]):
        self._fn = fn

    async def run(self, job: CronJob) -> Any:
        return await self._fn(job)


def as_backend(backend: Any) -> ExecutionBackend:
    """Accept either an ExecutionBackend or an async callable."""
    if isinstance(backend, ExecutionBackend):
        return backend
    if callable(backend):
        return CallableBackend(backend)
    raise TypeError(f"Execution backend must define run(job) or be callable, got {backend!r}")


__all__ = ["ExecutionBackend", "CallableBackend", "as_backend"]
