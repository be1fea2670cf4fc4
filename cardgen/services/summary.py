from __future__ import annotations

from cardgen.models.job_result import JobResult

"""SUMMARY line rendering for a finished generation job.

Format:
SUMMARY session={sid} job={jid} status={status} cards={processed}/{total}
failed_row={index|-} elapsed_sec={elapsed} throughput_cps={throughput}
"""


def _format_number(value: float) -> str:
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # Avoid scientific notation for very small numbers
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.3f}".rstrip('0').rstrip('.')


def render_summary_line(result: JobResult) -> str:
    """Render the SUMMARY line for one job.

    Examples:
        >>> from datetime import datetime, timezone
        >>> start = datetime(2024, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
        >>> end = datetime(2024, 1, 1, 10, 0, 2, tzinfo=timezone.utc)
        >>> result = JobResult(
        ...     job_id="j1", session_id="s1", status="succeeded", total_cards=3,
        ...     processed_cards=3, failed_row=None, start_time=start, end_time=end,
        ...     elapsed_seconds=2.0, throughput_cards_per_sec=1.5,
        ... )
        >>> render_summary_line(result)
        'SUMMARY session=s1 job=j1 status=succeeded cards=3/3 failed_row=- elapsed_sec=2 throughput_cps=1.5'
    """
    failed_row = "-" if result.failed_row is None else str(result.failed_row)
    return (
        f"SUMMARY session={result.session_id} "
        f"job={result.job_id} "
        f"status={result.status} "
        f"cards={result.processed_cards}/{result.total_cards} "
        f"failed_row={failed_row} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)} "
        f"throughput_cps={_format_number(result.throughput_cards_per_sec)}"
    )
