from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime

"""Job result models: timing and throughput of one generation job.

Feeds the SUMMARY log line written when a job reaches its terminal state.
"""


@dataclass(frozen=True)
class JobResult:
    job_id: str
    session_id: str
    status: str  # succeeded/failed
    total_cards: int
    processed_cards: int
    failed_row: int | None
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    throughput_cards_per_sec: float
    avg_render_seconds: float = 0.0
    p95_render_seconds: float = 0.0


class RenderStatsAccumulator:
    """Collects per-card render durations and summarises them.

    Render tasks run on worker threads but report through the coordinator,
    which calls ``add_render_time`` under the job lock.
    """

    def __init__(self) -> None:
        self.render_times: list[float] = []

    def add_render_time(self, elapsed_seconds: float) -> None:
        self.render_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Returns (renders, avg_render_seconds, p95_render_seconds)."""
        if not self.render_times:
            return (0, 0.0, 0.0)

        count = len(self.render_times)
        avg = statistics.mean(self.render_times)
        if count == 1:
            p95 = self.render_times[0]
        else:
            p95 = statistics.quantiles(self.render_times, n=20, method='inclusive')[18]
        return (count, avg, p95)
