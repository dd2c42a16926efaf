"""
File-backed Job Store.

The whole store is one JSON file:

    {"version": 1, "jobs": [{...}, {...}]}

It is read fully into memory by load() and written back in full by save().
Writes go to a temp file in the same directory and are renamed over the
target, so a crash mid-write never leaves a truncated store.

The store holds no scheduling logic. Callers (CronService) decide when to
save.
"""

import copy
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .entities import CronJob
from .errors import CorruptStoreError


logger = logging.getLogger(__name__)

STORE_VERSION = 1


class JobStore:
    """
    In-memory job table backed by a JSON file.

    Jobs are kept in a dict keyed by id; insertion order is the dispatch
    tie-break order.
    """

    def __init__(self, path: str | Path):
        """
        Initialize job store.

        Args:
            path: Path to the JSON store file. Parent directories are created on save.
        """
        self.path = Path(path)
        self._jobs: dict[str, CronJob] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    # =========================================================================
    # Disk I/O
    # =========================================================================

    def load(self) -> list[CronJob]:
        """
        Load the store from disk, replacing the in-memory table.

        A missing file is an empty store (first run).

        Raises:
            CorruptStoreError: If the file is unreadable or malformed
        """
        if not self.path.exists():
            logger.info(f"No cron store at {self.path}, starting empty")
            self._jobs = {}
            self._loaded = True
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = f.read()
        except OSError as e:
            raise CorruptStoreError(str(self.path), f"unreadable: {e}") from e

        if not raw.strip():
            raise CorruptStoreError(str(self.path), "file is empty")

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptStoreError(str(self.path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get("jobs"), list):
            raise CorruptStoreError(str(self.path), "expected an object with a 'jobs' list")

        jobs: dict[str, CronJob] = {}
        for index, record in enumerate(data["jobs"]):
            if not isinstance(record, dict):
                raise CorruptStoreError(str(self.path), f"job #{index} is not an object")
            try:
                job = CronJob.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                raise CorruptStoreError(str(self.path), f"job #{index} is malformed: {e}") from e
            if job.id in jobs:
                raise CorruptStoreError(str(self.path), f"duplicate job id {job.id}")
            jobs[job.id] = job

        self._jobs = jobs
        self._loaded = True
        logger.debug(f"Loaded {len(jobs)} cron job(s) from {self.path}")
        return list(jobs.values())

    def save(self) -> None:
        """
        Write the full store atomically (temp file + rename).

        Raises:
            OSError: If the file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "version": STORE_VERSION,
            "jobs": [job.to_dict() for job in self._jobs.values()],
        }

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.",
            suffix=".tmp",
            dir=str(self.path.parent),
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    # =========================================================================
    # In-memory Operations
    # =========================================================================

    def get(self, job_id: str) -> Optional[CronJob]:
        """Get a job by ID."""
        return self._jobs.get(job_id)

    def list(self) -> list[CronJob]:
        """List all jobs in insertion order."""
        return list(self._jobs.values())

    def upsert(self, job: CronJob) -> CronJob:
        """Insert a job, or replace the job with the same ID in place."""
        self._jobs[job.id] = job
        return job

    def delete(self, job_id: str) -> bool:
        """Delete a job. Returns True if it existed."""
        return self._jobs.pop(job_id, None) is not None

    def snapshot(self) -> dict[str, CronJob]:
        """Deep copy of the in-memory table, for restore()."""
        return copy.deepcopy(self._jobs)

    def restore(self, snapshot: dict[str, CronJob]) -> None:
        """
        Roll the in-memory table back to an earlier snapshot().

        Jobs that still exist are reset in place, so references held by
        callers and in-flight runs stay valid.
        """
        jobs: dict[str, CronJob] = {}
        for job_id, saved in snapshot.items():
            live = self._jobs.get(job_id)
            if live is None:
                jobs[job_id] = saved
            else:
                vars(live).update(vars(saved))
                jobs[job_id] = live
        self._jobs = jobs

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs
