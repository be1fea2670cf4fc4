from __future__ import annotations

from dataclasses import dataclass
from typing import Any

"""ProgressEvent: immutable snapshot published after every card completion.

Percentage policy: floor of processed * 100 / total (1/3 -> 33, 2/3 -> 66).
The wire form keeps the key names the browser client listens for.
"""

__all__ = [
    "ProgressEvent",
    "percentage_of",
]


def percentage_of(processed: int, total: int) -> int:
    if total <= 0:
        return 0
    return (processed * 100) // total


@dataclass(frozen=True)
class ProgressEvent:
    session_id: str
    total: int
    processed: int
    current_label: str

    @property
    def percentage(self) -> int:
        return percentage_of(self.processed, self.total)

    @classmethod
    def create(cls, session_id: str, total: int, processed: int, current_label: str) -> ProgressEvent:
        if total < 0 or processed < 0 or processed > total:
            raise ValueError(f"invalid progress {processed}/{total}")
        return cls(session_id=session_id, total=total, processed=processed, current_label=current_label)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "processed": self.processed,
            "percentage": self.percentage,
            "currentCard": self.current_label,
        }

    @classmethod
    def from_dict(cls, session_id: str, data: dict[str, Any]) -> ProgressEvent:
        """Inverse of ``to_dict`` (the percentage is recomputed)."""
        return cls.create(
            session_id,
            int(data["total"]),
            int(data["processed"]),
            str(data.get("currentCard", "")),
        )
