from __future__ import annotations

import json
import logging
import os
import shutil
import threading
import time
import uuid
import zipfile
from collections.abc import Sequence
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from cardgen.assets.store import LogoStore
from cardgen.errors import (
    ArchiveError,
    CardGenError,
    DuplicateSessionError,
    JobFailedError,
    JobNotFoundError,
    MalformedContentError,
    NotReadyError,
    RenderError,
    StalledJobError,
)
from cardgen.logging.error_log import ErrorLogBuffer
from cardgen.logging.init import SUMMARY_LEVEL
from cardgen.models.artifact import Artifact
from cardgen.models.config_models import AppConfig
from cardgen.models.error_record import ErrorRecord
from cardgen.models.generation_job import GenerationJob, JobStatus
from cardgen.models.job_result import JobResult, RenderStatsAccumulator
from cardgen.models.progress_event import ProgressEvent
from cardgen.models.row_record import RowRecord
from cardgen.render.card import CardRenderer
from .channel import EVENT_DONE, EVENT_ERROR, ProgressChannel, validate_session_id
from .summary import render_summary_line

"""Job coordinator.

Owns every GenerationJob from acceptance to its terminal state:

1. ``start_job`` registers the job for its session (one pending/running job per
   session, insert-if-absent under the registry lock) and returns at once.
2. A background thread fans the rows out to a bounded ThreadPoolExecutor. Each
   completed card bumps ``processed`` and publishes a ProgressEvent, both under the
   job lock, so a session's progress never goes backwards.
3. The first failed row aborts the job: pending renders are cancelled, the job is
   FAILED, one ``error`` event goes out and an ErrorRecord keeps the cause.
4. On success the cards are written in row order with a manifest, zipped, and a
   ``done`` event goes out.

If no render completes within ``jobs.stall_timeout_seconds`` the job fails as
stalled. Terminal jobs are purged by age and count on every ``start_job``.
"""

__all__ = [
    "JobCoordinator",
    "JobHandle",
    "ARCHIVE_NAME",
]

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "cards.zip"
MANIFEST_VERSION = 1


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _JobEntry:
    job: GenerationJob
    lock: threading.Lock = field(default_factory=threading.Lock)
    done: threading.Event = field(default_factory=threading.Event)
    thread: threading.Thread | None = None


class JobHandle:
    """Caller's reference to an accepted job."""

    def __init__(self, entry: _JobEntry) -> None:
        self._entry = entry

    @property
    def job_id(self) -> str:
        return self._entry.job.job_id

    @property
    def session_id(self) -> str:
        return self._entry.job.session_id

    @property
    def status(self) -> JobStatus:
        with self._entry.lock:
            return self._entry.job.status

    @property
    def total(self) -> int:
        return self._entry.job.total

    def done(self) -> bool:
        return self._entry.done.is_set()

    def wait(self, timeout: float | None = None) -> GenerationJob:
        """Block until the job is terminal.

        Raises:
            TimeoutError: still running after ``timeout`` seconds
        """
        if not self._entry.done.wait(timeout):
            raise TimeoutError(f"job {self.job_id} still running after {timeout}s")
        return self._entry.job


class JobCoordinator:
    def __init__(
        self,
        config: AppConfig,
        renderer: CardRenderer,
        channel: ProgressChannel,
        logo_store: LogoStore | None = None,
        error_log: ErrorLogBuffer | None = None,
    ) -> None:
        self.config = config
        self.renderer = renderer
        self.channel = channel
        self.logo_store = logo_store
        self.error_log = error_log if error_log is not None else ErrorLogBuffer(config.storage.logs_dir)
        self.jobs_dir = config.storage.jobs_dir

        self._registry_lock = threading.Lock()
        self._jobs: dict[str, _JobEntry] = {}
        # session id -> job id of its pending/running job
        self._active_sessions: dict[str, str] = {}
        # session id -> job id of its most recent job, any state
        self._session_jobs: dict[str, str] = {}

    # ------------------------------------------------------------------ registry

    def start_job(self, rows: Sequence[RowRecord], session_id: str) -> JobHandle:
        """Accept a parsed row sequence for ``session_id`` and start rendering.

        Raises:
            InvalidSessionError: malformed session id
            DuplicateSessionError: the session already has a pending/running job
            MalformedContentError: empty row sequence
        """
        validate_session_id(session_id)
        if not rows:
            raise MalformedContentError("no data rows to render")
        self.purge_expired()

        job_id = uuid.uuid4().hex
        with self._registry_lock:
            running = self._active_sessions.get(session_id)
            if running is not None:
                raise DuplicateSessionError(f"session {session_id} already has job {running} in progress")
            job = GenerationJob(
                job_id=job_id,
                session_id=session_id,
                rows=list(rows),
                work_dir=self.jobs_dir / job_id,
                created_at=_utcnow(),
            )
            entry = _JobEntry(job=job)
            self._jobs[job_id] = entry
            self._active_sessions[session_id] = job_id
            self._session_jobs[session_id] = job_id

        thread = threading.Thread(target=self._run, args=(entry,), name=f"cardgen-job-{job_id[:8]}", daemon=True)
        entry.thread = thread
        logger.info("Job accepted: job=%s session=%s rows=%d", job_id, session_id, job.total)
        thread.start()
        return JobHandle(entry)

    def _entry(self, job_id: str) -> _JobEntry:
        with self._registry_lock:
            entry = self._jobs.get(job_id)
        if entry is None:
            raise JobNotFoundError(f"job {job_id!r} not found")
        return entry

    def get_job(self, job_id: str) -> GenerationJob:
        return self._entry(job_id).job

    def snapshot(self, job_id: str) -> dict[str, Any]:
        """Consistent status view of a job (web poll fallback)."""
        entry = self._entry(job_id)
        with entry.lock:
            return entry.job.to_dict()

    def handle(self, job_id: str) -> JobHandle:
        return JobHandle(self._entry(job_id))

    def job_for_session(self, session_id: str) -> GenerationJob | None:
        with self._registry_lock:
            job_id = self._session_jobs.get(session_id)
            entry = self._jobs.get(job_id) if job_id else None
        return entry.job if entry else None

    def latest_succeeded_job(self) -> GenerationJob | None:
        with self._registry_lock:
            entries = list(self._jobs.values())
        succeeded = [
            e.job for e in entries
            if e.job.status is JobStatus.SUCCEEDED and e.job.finished_at is not None
        ]
        if not succeeded:
            return None
        return max(succeeded, key=lambda j: j.finished_at)

    def get_result(self, job_id: str) -> Path:
        """Archive location of a succeeded job.

        Raises:
            JobNotFoundError: unknown or purged job
            NotReadyError: job still pending/running
            JobFailedError: job failed (``reason`` is the client-safe message)
        """
        entry = self._entry(job_id)
        with entry.lock:
            job = entry.job
            status = job.status
            archive = job.archive_path
            reason = job.error
        if not status.is_terminal:
            raise NotReadyError(f"job {job_id} is {status.value}")
        if status is JobStatus.FAILED:
            raise JobFailedError(f"job {job_id} failed", reason=reason)
        if archive is None or not archive.is_file():
            raise JobNotFoundError(f"archive of job {job_id} is gone")
        return archive

    def purge_expired(self, now: datetime | None = None) -> list[str]:
        """Drop terminal jobs older than ``retention_seconds`` or beyond ``max_retained_jobs``.

        Returns the purged job ids. Pending/running jobs are never touched.
        """
        jobs_cfg = self.config.jobs
        now = now or _utcnow()
        cutoff = now - timedelta(seconds=jobs_cfg.retention_seconds)

        with self._registry_lock:
            terminal = [
                e for e in self._jobs.values()
                if e.job.status.is_terminal and e.job.finished_at is not None
            ]
            terminal.sort(key=lambda e: e.job.finished_at, reverse=True)
            expired = [
                e for i, e in enumerate(terminal)
                if i >= jobs_cfg.max_retained_jobs or e.job.finished_at < cutoff
            ]
            for e in expired:
                del self._jobs[e.job.job_id]
                if self._session_jobs.get(e.job.session_id) == e.job.job_id:
                    del self._session_jobs[e.job.session_id]

        for e in expired:
            if not e.job.work_dir.exists():
                continue
            try:
                shutil.rmtree(e.job.work_dir)
            except OSError as err:
                logger.warning("Could not remove scratch dir of job %s: %s", e.job.job_id, err)
        if expired:
            logger.info("Purged %d expired job(s)", len(expired))
        return [e.job.job_id for e in expired]

    # ------------------------------------------------------------------ execution

    def _render_one(self, row: RowRecord) -> tuple[Artifact, float]:
        t0 = time.perf_counter()
        logo = None
        supplier_column = self.config.spreadsheet.supplier_column
        if self.logo_store is not None and supplier_column:
            try:
                logo = self.logo_store.resolve_for(row.text(supplier_column))
            except OSError as e:
                raise RenderError(f"row {row.index}: logo unreadable: {e}", row_index=row.index) from e
        artifact = self.renderer.render(row, logo)
        return artifact, time.perf_counter() - t0

    def _render_all(self, entry: _JobEntry, stats: RenderStatsAccumulator) -> list[Artifact]:
        job = entry.job
        stall_timeout = self.config.jobs.stall_timeout_seconds
        workers = max(1, min(self.config.jobs.max_workers, job.total))
        results: dict[int, Artifact] = {}

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"cardgen-render-{job.job_id[:8]}")
        try:
            futures: dict[Future[tuple[Artifact, float]], RowRecord] = {
                executor.submit(self._render_one, row): row for row in job.rows
            }
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=stall_timeout, return_when=FIRST_COMPLETED)
                if not done:
                    raise StalledJobError(
                        f"no card completed within {stall_timeout}s ({job.processed}/{job.total} done)"
                    )
                for fut in sorted(done, key=lambda f: futures[f].index):
                    artifact, elapsed = fut.result()
                    results[artifact.index] = artifact
                    with entry.lock:
                        stats.add_render_time(elapsed)
                        processed = job.advance(artifact.label, _utcnow())
                        self.channel.publish_progress(
                            ProgressEvent.create(job.session_id, job.total, processed, artifact.label)
                        )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return [results[i] for i in sorted(results)]

    def _package(self, job: GenerationJob, artifacts: list[Artifact]) -> Path:
        """Write cards + manifest to the job's scratch dir and zip the cards."""
        archive = job.work_dir / ARCHIVE_NAME
        tmp = job.work_dir / (ARCHIVE_NAME + ".part")
        try:
            job.cards_dir.mkdir(parents=True, exist_ok=True)
            for a in artifacts:
                (job.cards_dir / a.filename).write_bytes(a.data)
            manifest = {
                "version": MANIFEST_VERSION,
                "jobId": job.job_id,
                "sessionId": job.session_id,
                "cards": [
                    {"index": a.index, "label": a.label, "filename": a.filename, "format": a.format.value}
                    for a in artifacts
                ],
            }
            job.manifest_path.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for a in artifacts:
                    zf.writestr(a.filename, a.data)
            os.replace(tmp, archive)
        except (OSError, zipfile.BadZipFile) as e:
            tmp.unlink(missing_ok=True)
            raise ArchiveError(f"job {job.job_id}: could not write archive: {e}") from e
        return archive

    def _run(self, entry: _JobEntry) -> None:
        job = entry.job
        stats = RenderStatsAccumulator()
        t0 = time.perf_counter()
        with entry.lock:
            job.transition(JobStatus.RUNNING)
            job.started_at = _utcnow()
            job.last_progress_at = job.started_at

        try:
            artifacts = self._render_all(entry, stats)
            archive = self._package(job, artifacts)
        except RenderError as e:
            self._fail(entry, e, "RENDER_ERROR", e.row_index)
        except StalledJobError as e:
            self._fail(entry, e, "STALLED_JOB", -1)
        except ArchiveError as e:
            self._fail(entry, e, "ARCHIVE_ERROR", -1)
        except Exception as e:
            logger.exception("Unexpected error in job %s", job.job_id)
            self._fail(entry, e, "UNEXPECTED_ERROR", -1)
        else:
            with entry.lock:
                job.archive_path = archive
                job.artifact_names = [a.filename for a in artifacts]
                job.finished_at = _utcnow()
                job.transition(JobStatus.SUCCEEDED)
            logger.info("Job succeeded: job=%s cards=%d archive=%s", job.job_id, job.processed, archive)
        finally:
            self._finish(entry, stats, time.perf_counter() - t0)

    def _fail(self, entry: _JobEntry, exc: Exception, error_type: str, row: int) -> None:
        job = entry.job
        public = exc.public_message if isinstance(exc, CardGenError) else CardGenError.public_message
        code = exc.code if isinstance(exc, CardGenError) else "UNEXPECTED_ERROR"
        with entry.lock:
            job.error = public
            job.error_code = code
            job.failed_row = row if row >= 0 else None
            job.finished_at = _utcnow()
            job.transition(JobStatus.FAILED)
        self.error_log.append(ErrorRecord.create(job.session_id, job.job_id, row, error_type, str(exc)))
        logger.error("Job failed: job=%s session=%s row=%s type=%s: %s", job.job_id, job.session_id, row, error_type, exc)

    def _finish(self, entry: _JobEntry, stats: RenderStatsAccumulator, elapsed: float) -> None:
        try:
            self._announce(entry, stats, elapsed)
        finally:
            entry.done.set()

    def _announce(self, entry: _JobEntry, stats: RenderStatsAccumulator, elapsed: float) -> None:
        job = entry.job
        # Free the session before the terminal event so a client reacting to it can start again
        with self._registry_lock:
            if self._active_sessions.get(job.session_id) == job.job_id:
                del self._active_sessions[job.session_id]

        if job.status is JobStatus.SUCCEEDED:
            self.channel.publish(job.session_id, EVENT_DONE, {
                "jobId": job.job_id,
                "total": job.total,
                "downloadUrl": f"/api/download/{job.job_id}",
            })
        else:
            self.channel.publish(job.session_id, EVENT_ERROR, {
                "jobId": job.job_id,
                "message": job.error,
                "code": job.error_code,
            })

        _, avg, p95 = stats.get_stats()
        result = JobResult(
            job_id=job.job_id,
            session_id=job.session_id,
            status=job.status.value,
            total_cards=job.total,
            processed_cards=job.processed,
            failed_row=job.failed_row,
            start_time=job.started_at or job.created_at or _utcnow(),
            end_time=job.finished_at or _utcnow(),
            elapsed_seconds=elapsed,
            throughput_cards_per_sec=job.processed / elapsed if elapsed > 0 else 0.0,
            avg_render_seconds=avg,
            p95_render_seconds=p95,
        )
        # The formatter adds the "SUMMARY " label itself
        logger.log(SUMMARY_LEVEL, render_summary_line(result)[len("SUMMARY "):])

        if len(self.error_log):
            try:
                self.error_log.flush()
            except OSError as e:
                logger.warning("Could not flush error log: %s", e)
