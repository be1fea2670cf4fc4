from __future__ import annotations

import json
import threading
import zipfile
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from cardgen.assets.store import LogoStore
from cardgen.errors import (
    DuplicateSessionError,
    InvalidSessionError,
    JobFailedError,
    JobNotFoundError,
    MalformedContentError,
    NotReadyError,
    RenderError,
)
from cardgen.excel.reader import read_spreadsheet
from cardgen.logging.error_log import ErrorLogBuffer
from cardgen.logging.init import reset_logging, setup_logging
from cardgen.models.config_models import AppConfig
from cardgen.models.generation_job import JobStatus
from cardgen.render.card import CardRenderer
from cardgen.services.channel import EVENT_DONE, EVENT_ERROR, EVENT_PROGRESS, ProgressChannel
from cardgen.services.coordinator import JobCoordinator

EXPECTED_FILES = [
    "0001_arroz-tipo-1-5kg.png",
    "0002_feijao-carioca-1kg.png",
    "0003_cafe-torrado-500g.png",
]


def _coordinator(config: AppConfig, logo_store: LogoStore | None = None) -> JobCoordinator:
    renderer = CardRenderer(config.render, config.spreadsheet)
    return JobCoordinator(config, renderer, ProgressChannel(), logo_store=logo_store)


def _collect(sub) -> list:
    return list(sub)


def _error_records(config: AppConfig) -> list[dict]:
    files = sorted(config.storage.logs_dir.glob("errors-*.log"))
    return [json.loads(line) for f in files for line in f.read_text(encoding="utf-8").splitlines()]


def test_job_renders_every_row_in_order(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    sub = coord.channel.subscribe("s1")

    handle = coord.start_job(rows, "s1")
    assert handle.total == 3
    events = _collect(sub)
    job = handle.wait(10)

    assert job.status is JobStatus.SUCCEEDED
    assert job.processed == 3
    assert [e.name for e in events] == [EVENT_PROGRESS] * 3 + [EVENT_DONE]
    assert [e.data["processed"] for e in events[:3]] == [1, 2, 3]
    assert [e.data["percentage"] for e in events[:3]] == [33, 66, 100]
    assert events[-1].data == {"jobId": job.job_id, "total": 3, "downloadUrl": f"/api/download/{job.job_id}"}

    archive = coord.get_result(job.job_id)
    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == EXPECTED_FILES
    manifest = json.loads(job.manifest_path.read_text(encoding="utf-8"))
    assert [c["index"] for c in manifest["cards"]] == [0, 1, 2]
    assert manifest["sessionId"] == "s1"
    assert not (job.work_dir / "cards.zip.part").exists()


def test_snapshot_and_lookups(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    job = coord.start_job(rows, "s1").wait(10)

    snap = coord.snapshot(job.job_id)
    assert snap["status"] == "succeeded"
    assert snap["ready"] is True
    assert snap["processed"] == snap["total"] == 3
    assert snap["finishedAt"].endswith("Z")
    assert coord.job_for_session("s1") is job
    assert coord.job_for_session("other") is None
    assert coord.latest_succeeded_job() is job
    assert coord.handle(job.job_id).done()


def test_start_job_rejects_bad_input(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    with pytest.raises(MalformedContentError):
        coord.start_job([], "s1")
    with pytest.raises(InvalidSessionError):
        coord.start_job(rows, "bad session")


def test_one_running_job_per_session(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    gate = threading.Event()
    real_render = coord.renderer.render

    def gated(row, logo=None):
        gate.wait(5)
        return real_render(row, logo)

    with patch.object(coord.renderer, "render", side_effect=gated):
        first = coord.start_job(rows, "s1")
        with pytest.raises(DuplicateSessionError):
            coord.start_job(rows, "s1")
        with pytest.raises(NotReadyError):
            coord.get_result(first.job_id)
        other = coord.start_job(rows, "s2")
        gate.set()
        assert first.wait(10).status is JobStatus.SUCCEEDED
        assert other.wait(10).status is JobStatus.SUCCEEDED

    # session is free again once the job is terminal
    again = coord.start_job(rows, "s1")
    assert again.wait(10).status is JobStatus.SUCCEEDED
    assert again.job_id != first.job_id


def test_render_failure_aborts_job(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    real_render = coord.renderer.render

    def failing(row, logo=None):
        if row.index == 1:
            raise RenderError("row 1: font exploded", row_index=1)
        return real_render(row, logo)

    sub = coord.channel.subscribe("s1")
    with patch.object(coord.renderer, "render", side_effect=failing):
        handle = coord.start_job(rows, "s1")
        events = _collect(sub)
        job = handle.wait(10)

    assert job.status is JobStatus.FAILED
    assert job.failed_row == 1
    assert job.processed < 3
    assert job.archive_path is None
    terminal = [e for e in events if e.is_terminal]
    assert [e.name for e in terminal] == [EVENT_ERROR]
    assert terminal[0].data["code"] == "RENDER_ERROR"
    assert terminal[0].data["message"] == RenderError.public_message
    assert "font exploded" not in json.dumps(terminal[0].data)

    with pytest.raises(JobFailedError) as exc:
        coord.get_result(job.job_id)
    assert exc.value.reason == RenderError.public_message

    records = _error_records(app_config)
    assert len(records) == 1
    assert records[0]["row"] == 1
    assert records[0]["error_type"] == "RENDER_ERROR"
    assert records[0]["job"] == job.job_id
    assert "font exploded" in records[0]["message"]


def test_unexpected_exception_fails_job_generically(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    with patch.object(coord.renderer, "render", side_effect=RuntimeError("internal detail")):
        job = coord.start_job(rows, "s1").wait(10)

    assert job.status is JobStatus.FAILED
    assert job.failed_row is None
    assert "internal detail" not in (job.error or "")
    assert _error_records(app_config)[0]["error_type"] == "UNEXPECTED_ERROR"


def test_given_error_log_is_used_even_when_empty(app_config: AppConfig, sample_xlsx: bytes, temp_workdir: Path):
    shared = ErrorLogBuffer(temp_workdir / "shared-logs")
    assert len(shared) == 0
    renderer = CardRenderer(app_config.render, app_config.spreadsheet)
    coord = JobCoordinator(app_config, renderer, ProgressChannel(), error_log=shared)
    assert coord.error_log is shared

    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    with patch.object(coord.renderer, "render", side_effect=RuntimeError("boom")):
        job = coord.start_job(rows, "s1").wait(10)

    assert job.status is JobStatus.FAILED
    lines = shared.file_path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["job"] for line in lines] == [job.job_id]


def test_stalled_job_fails(app_config: AppConfig, sample_xlsx: bytes):
    cfg = replace(app_config, jobs=replace(app_config.jobs, stall_timeout_seconds=0.2))
    coord = _coordinator(cfg)
    rows = read_spreadsheet(sample_xlsx, cfg.spreadsheet)
    gate = threading.Event()

    def hung(row, logo=None):
        gate.wait(5)
        raise RenderError("released", row_index=row.index)

    sub = coord.channel.subscribe("s1")
    try:
        with patch.object(coord.renderer, "render", side_effect=hung):
            handle = coord.start_job(rows, "s1")
            events = _collect(sub)
            job = handle.wait(10)
    finally:
        gate.set()

    assert job.status is JobStatus.FAILED
    assert job.error_code == "STALLED_JOB"
    assert events[-1].name == EVENT_ERROR
    record = _error_records(cfg)[0]
    assert record["row"] == -1
    assert record["error_type"] == "STALLED_JOB"


def test_get_result_unknown_job(app_config: AppConfig):
    with pytest.raises(JobNotFoundError):
        _coordinator(app_config).get_result("nope")


def test_purge_by_age(app_config: AppConfig, sample_xlsx: bytes):
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    jobs = [coord.start_job(rows, sid).wait(10) for sid in ("s1", "s2")]

    assert coord.purge_expired() == []
    later = jobs[-1].finished_at + timedelta(seconds=app_config.jobs.retention_seconds + 1)
    purged = coord.purge_expired(now=later)

    assert set(purged) == {j.job_id for j in jobs}
    for j in jobs:
        assert not j.work_dir.exists()
        with pytest.raises(JobNotFoundError):
            coord.get_job(j.job_id)
    assert coord.job_for_session("s1") is None


def test_purge_by_count_keeps_newest(app_config: AppConfig, sample_xlsx: bytes):
    cfg = replace(app_config, jobs=replace(app_config.jobs, max_retained_jobs=1))
    coord = _coordinator(cfg)
    rows = read_spreadsheet(sample_xlsx, cfg.spreadsheet)
    old = coord.start_job(rows, "s1").wait(10)
    new = coord.start_job(rows, "s2").wait(10)

    assert coord.purge_expired() == [old.job_id]
    assert coord.get_job(new.job_id) is new
    assert isinstance(coord.get_result(new.job_id), Path)


def test_supplier_logo_is_passed_to_renderer(app_config: AppConfig, sample_xlsx: bytes, logo_png: bytes):
    store = LogoStore(app_config.storage.logo_dir, app_config.limits.max_logo_bytes)
    store.save("Acme.png", logo_png)
    coord = _coordinator(app_config, logo_store=store)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)

    with patch.object(coord.renderer, "render", wraps=coord.renderer.render) as spy:
        job = coord.start_job(rows, "s1").wait(10)

    assert job.status is JobStatus.SUCCEEDED
    logos = {c.args[0].index: c.args[1] for c in spy.call_args_list}
    assert logos[0].name == "Acme.png"
    assert logos[1].name == "Acme.png"
    assert logos[2] is None


def test_summary_line_logged(app_config: AppConfig, sample_xlsx: bytes, capsys):
    reset_logging()
    setup_logging()
    coord = _coordinator(app_config)
    rows = read_spreadsheet(sample_xlsx, app_config.spreadsheet)
    job = coord.start_job(rows, "s1").wait(10)

    out = capsys.readouterr().out
    summary = [line for line in out.splitlines() if line.startswith("SUMMARY ")]
    assert len(summary) == 1
    assert f"session=s1 job={job.job_id} status=succeeded cards=3/3 failed_row=-" in summary[0]
    assert "SUMMARY SUMMARY" not in out
