from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""ErrorRecord model for the server-side error log.

Carries the detailed cause of a job failure. Clients only ever see the generic
message of the corresponding domain error; this record is where the real reason
is kept. ``row=-1`` marks job-level errors (archive I/O, stall) that are not tied
to a single spreadsheet row.
"""

__all__ = [
    "ErrorRecord",
]


@dataclass(frozen=True)
class ErrorRecord:
    """Structured error record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        session: Session id that owned the job
        job: Job id
        row: 0-based row index. Use -1 for job-level errors
        error_type: Error classification in UPPER_SNAKE_CASE format
        message: Internal error description
    """
    timestamp: str
    session: str
    job: str
    row: int
    error_type: str
    message: str

    @staticmethod
    def create(session: str, job: str, row: int, error_type: str, message: str) -> ErrorRecord:
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return ErrorRecord(
            timestamp=ts,
            session=session,
            job=job,
            row=row,
            error_type=error_type,
            message=message,
        )

    def to_json_line(self) -> str:
        # dataclass -> dict keeps the key set fixed
        return json.dumps(asdict(self), ensure_ascii=False)
