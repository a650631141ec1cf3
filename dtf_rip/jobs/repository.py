"""Job repositories.

``JobRepository`` is the storage interface the controller is built on.
Records are returned as copies, so callers can never mutate stored state
behind the repository's back.  ``update`` and ``remove`` return ``None``
for unknown ids instead of raising: a pipeline whose job was deleted
simply sees its writes rejected.

``JsonJobRepository`` rewrites the whole history file atomically on every
mutation, newest job first.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Protocol


from dtf_rip.errors import RipError
from dtf_rip.jobs.models import Job, JobStatus, utcnow
from dtf_rip.utils import fs

logger = logging.getLogger(__name__)


class JobRepository(Protocol):
    """Storage for job records."""

    def get_all(self) -> list[Job]: ...

    def get(self, job_id: str) -> Job | None: ...

    def append(self, job: Job) -> Job: ...

    def update(self, job_id: str, **fields: Any) -> Job | None: ...

    def remove(self, job_id: str) -> Job | None: ...


class InMemoryJobRepository:
    """Thread-safe job history held in memory, newest first."""

    def __init__(self, jobs: Iterable[Job] | None = None) -> None:
        self._lock = threading.RLock()
        self._jobs: list[Job] = list(jobs or [])

    def get_all(self) -> list[Job]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._jobs]

    def get(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._find(job_id)
            return job.model_copy(deep=True) if job is not None else None

    def append(self, job: Job) -> Job:
        with self._lock:
            if self._find(job.id) is not None:
                raise RipError(f"Job already exists: {job.id}")
            self._jobs.insert(0, job.model_copy(deep=True))
            self._save()
        return job

    def update(self, job_id: str, **fields: Any) -> Job | None:
        """Apply *fields*, stamp ``updated_at`` and persist; None if unknown."""
        with self._lock:
            for idx, job in enumerate(self._jobs):
                if job.id == job_id:
                    updated = job.with_fields(**fields, updated_at=utcnow())
                    self._jobs[idx] = updated
                    self._save()
                    return updated.model_copy(deep=True)
        return None

    def remove(self, job_id: str) -> Job | None:
        with self._lock:
            job = self._find(job_id)
            if job is None:
                return None
            self._jobs = [j for j in self._jobs if j.id != job_id]
            self._save()
        return job

    def select(
        self,
        status: JobStatus | None = None,
        older_than: datetime | None = None,
    ) -> list[Job]:
        """Jobs matching *status* and created before *older_than*."""
        with self._lock:
            return [
                job.model_copy(deep=True)
                for job in self._jobs
                if (status is None or job.status is status)
                and (older_than is None or job.created_at < older_than)
            ]

    def _find(self, job_id: str) -> Job | None:
        return next((job for job in self._jobs if job.id == job_id), None)

    def _save(self) -> None:
        pass


class JsonJobRepository(InMemoryJobRepository):
    """Job history persisted to a JSON file.

    Parameters
    ----------
    path : str | Path
        History file; created empty if missing.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        try:
            records = fs.load_json(self._path, default=None)
            jobs = [Job.model_validate(r) for r in (records or [])]
        except ValueError as exc:
            raise RipError(f"Invalid job history file {self._path}: {exc}") from exc
        super().__init__(jobs)
        if records is None:
            self._save()
        logger.info("Loaded %d job(s) from %s", len(jobs), self._path)

    def _save(self) -> None:
        fs.atomic_json_dump([job.to_record() for job in self._jobs], self._path)
