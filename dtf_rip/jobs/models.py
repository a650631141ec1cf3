"""Job records, status state machine and progress events.

Status transitions (anything else raises ``InvalidTransition``)::

    pending -> processing -> processed -> printing -> printed
                   |                          |
                   +--------> error <---------+

``printed`` and ``error`` are terminal.  Deleting a job is a separate
lifecycle action, not a transition.

Progress rules:
    - 0..100, non-decreasing within ``processing`` and within ``printing``
    - 100 exactly when status is ``processed`` or ``printed``
    - ``printing`` restarts at 0
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from dtf_rip.errors import InvalidTransition
from dtf_rip.printers.models import DispatchResult
from dtf_rip.profiles.models import STANDARD_PROFILE_ID


# ---------------------------------------------------------------------------
# Status
# ---------------------------------------------------------------------------


class JobStatus(str, Enum):
    """Closed set of job states."""

    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"
    PRINTING = "printing"
    PRINTED = "printed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]

    @property
    def is_complete(self) -> bool:
        """True for states whose progress is 100."""
        return self in (JobStatus.PROCESSED, JobStatus.PRINTED)

    def can_transition(self, target: "JobStatus") -> bool:
        return target in _TRANSITIONS[self]

    def check_transition(self, target: "JobStatus") -> None:
        if not self.can_transition(target):
            raise InvalidTransition(
                f"Cannot move job from {self.value} to {target.value}"
            )


_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSED, JobStatus.ERROR}),
    JobStatus.PROCESSED: frozenset({JobStatus.PRINTING}),
    JobStatus.PRINTING: frozenset({JobStatus.PRINTED, JobStatus.ERROR}),
    JobStatus.PRINTED: frozenset(),
    JobStatus.ERROR: frozenset(),
}


# ---------------------------------------------------------------------------
# Job record
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_job_id() -> str:
    return uuid.uuid4().hex


class Job(BaseModel):
    """A unit of work, persisted as a camelCase JSON record."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(default_factory=new_job_id)
    name: str = ""
    source_file: str
    file_name: str = ""
    printer_id: str
    color_profile_id: str = STANDARD_PROFILE_ID
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(0, ge=0, le=100)
    output_manifest: Optional[Dict[str, str]] = None
    output_dir: Optional[str] = None
    error: Optional[str] = None
    dispatch_result: Optional[DispatchResult] = None
    white_expansion: int = Field(0, ge=0)
    auto_print: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def fill_defaults(self) -> 'Job':
        if not self.name:
            self.name = f"Job {self.id[:8]}"
        if not self.file_name:
            self.file_name = self.source_file.replace("\\", "/").rsplit("/", 1)[-1]
        return self

    def to_record(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def with_fields(self, **fields: Any) -> 'Job':
        """Validated copy with *fields* replaced."""
        return Job.model_validate({**self.model_dump(), **fields})


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JobEvent:
    """Progress notification published after every persisted transition."""

    job_id: str
    status: JobStatus
    progress: int
    message: Optional[str] = None
    error: Optional[str] = None
    output_manifest: Optional[Dict[str, str]] = None
    dispatch_result: Optional[DispatchResult] = None

    @classmethod
    def from_job(cls, job: Job, message: Optional[str] = None) -> 'JobEvent':
        return cls(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            message=message,
            error=job.error if job.status is JobStatus.ERROR else None,
            output_manifest=(
                dict(job.output_manifest)
                if job.output_manifest and job.status.is_complete else None
            ),
            dispatch_result=job.dispatch_result if job.status is JobStatus.PRINTED else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Transport payload; optional fields are omitted when unset."""
        payload: Dict[str, Any] = {
            "jobId": self.job_id,
            "status": self.status.value,
            "progress": self.progress,
        }
        if self.message is not None:
            payload["message"] = self.message
        if self.error is not None:
            payload["error"] = self.error
        if self.output_manifest is not None:
            payload["outputManifest"] = dict(self.output_manifest)
        if self.dispatch_result is not None:
            payload["dispatchResult"] = self.dispatch_result.to_record()
        return payload
