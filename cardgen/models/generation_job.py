from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .row_record import RowRecord

"""GenerationJob domain model and JobStatus enum.

The GenerationJob is the unit of work for one accepted upload. It is owned by the
job coordinator for its whole lifetime: only the coordinator mutates it, always
while holding the job's lock.
"""

__all__ = [
    "JobStatus",
    "GenerationJob",
    "InvalidTransitionError",
]


class InvalidTransitionError(Exception):
    """Raised when a status change would leave the lifecycle graph."""


class JobStatus(Enum):
    """Lifecycle of a generation job.

    State transitions: pending → running → (succeeded | failed)

    - PENDING: accepted and registered for its session, no render started
    - RUNNING: renders in flight, progress events being published
    - SUCCEEDED: every row rendered and the archive written
    - FAILED: aborted (render error, stall, archive I/O)
    """
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


_ALLOWED: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED},
    JobStatus.RUNNING: {JobStatus.SUCCEEDED, JobStatus.FAILED},
    JobStatus.SUCCEEDED: set(),
    JobStatus.FAILED: set(),
}


@dataclass
class GenerationJob:
    job_id: str
    session_id: str
    rows: list[RowRecord]
    work_dir: Path                      # scratch area exclusive to this job
    status: JobStatus = JobStatus.PENDING
    processed: int = 0
    current_label: str = ""
    archive_path: Path | None = None
    error: str | None = None            # generic, client-safe reason
    error_code: str | None = None
    failed_row: int | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_progress_at: datetime | None = None
    artifact_names: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def cards_dir(self) -> Path:
        return self.work_dir / "cards"

    @property
    def manifest_path(self) -> Path:
        return self.cards_dir / "manifest.json"

    def transition(self, new_status: JobStatus) -> None:
        if new_status not in _ALLOWED[self.status]:
            raise InvalidTransitionError(
                f"job {self.job_id}: {self.status.value} -> {new_status.value} not allowed"
            )
        self.status = new_status

    def advance(self, label: str, at: datetime) -> int:
        """Count one more completed card; returns the new processed count."""
        if self.status is not JobStatus.RUNNING:
            raise InvalidTransitionError(f"job {self.job_id} is not running")
        if self.processed >= self.total:
            raise InvalidTransitionError(f"job {self.job_id} already processed {self.total} rows")
        self.processed += 1
        self.current_label = label
        self.last_progress_at = at
        return self.processed

    def to_dict(self) -> dict[str, Any]:
        def _ts(value: datetime | None) -> str | None:
            return value.isoformat().replace("+00:00", "Z") if value else None

        return {
            "jobId": self.job_id,
            "sessionId": self.session_id,
            "status": self.status.value,
            "total": self.total,
            "processed": self.processed,
            "currentCard": self.current_label,
            "error": self.error,
            "createdAt": _ts(self.created_at),
            "startedAt": _ts(self.started_at),
            "finishedAt": _ts(self.finished_at),
            "ready": self.status is JobStatus.SUCCEEDED,
        }
