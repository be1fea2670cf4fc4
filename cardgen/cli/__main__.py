from __future__ import annotations

import argparse
import shutil
import sys
import time
import uuid
from pathlib import Path

from dotenv import load_dotenv

from cardgen.config.loader import (
    DEFAULT_CONFIG_PATH,
    ENV_CONFIG_PATH,
    ConfigError,
    build_config,
    load_config,
    resolve_config_path,
)
from cardgen.errors import CardGenError
from cardgen.excel.reader import inspect_spreadsheet, read_spreadsheet, validate_spreadsheet_upload
from cardgen.logging.init import set_debug, setup_logging
from cardgen.models.config_models import AppConfig
from cardgen.models.generation_job import JobStatus
from cardgen.models.progress_event import ProgressEvent
from cardgen.services.channel import EVENT_PROGRESS
from cardgen.services.journal import compose_for_job
from cardgen.services.progress import ProgressTracker
from cardgen.services.runtime import build_runtime

"""CLI entrypoint.

Commands:
- ``serve``: run the HTTP API
- ``generate FILE``: render one spreadsheet locally (tqdm bar on a TTY), print the
  archive path, optionally compose the journal
- ``inspect FILE``: print the header and first rows

Exit codes: 0 success, 1 fatal (config, validation, parse), 2 job failed.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_JOB_FAILED = 2


def _load_env_file(path: Path, override: bool = False) -> None:
    """Load .env via python-dotenv; real environment variables win unless ``override``."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="cardgen", description="Spreadsheet -> promotional cards generator")
    p.add_argument("--config", help=f"Config file (default: ${ENV_CONFIG_PATH} or {DEFAULT_CONFIG_PATH})")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (default: server.host)")
    serve.add_argument("--port", type=int, help="Port (default: server.port)")

    gen = sub.add_parser("generate", help="Render cards for one spreadsheet")
    gen.add_argument("file", type=Path, help=".xlsx spreadsheet")
    gen.add_argument("--session", help="Session id (default: random)")
    gen.add_argument("--logo-dir", type=Path, help="Logo directory (default: storage.logo_dir)")
    gen.add_argument("-o", "--output", type=Path, help="Copy the archive here")
    gen.add_argument("--journal", type=Path, help="Also write the journal PDF here")
    gen.add_argument("--timeout", type=float, default=None, help="Give up waiting after N seconds")

    insp = sub.add_parser("inspect", help="Print header and sample rows")
    insp.add_argument("file", type=Path, help=".xlsx spreadsheet")
    insp.add_argument("--rows", type=int, default=3, help="Sample rows to print")
    return p.parse_args(argv)


def _load_app_config(explicit: str | None, logger) -> AppConfig:
    path = resolve_config_path(explicit)
    if explicit is None and path == DEFAULT_CONFIG_PATH and not path.exists():
        logger.info(f"config: {path} not found, using defaults")
        return build_config({})
    return load_config(path)


def _read_input(path: Path, cfg: AppConfig) -> bytes:
    data = path.read_bytes()
    validate_spreadsheet_upload(path.name, data, None, cfg.limits.max_spreadsheet_bytes)
    return data


def _inspect(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    try:
        data = _read_input(args.file, cfg)
        sheet = inspect_spreadsheet(data, cfg.spreadsheet, limit=args.rows)
    except (OSError, CardGenError) as e:
        logger.error(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {args.file.name}")
    print(f"  SHEET: {sheet.sheet_name} cols={sheet.columns}")
    for row_number, values in sheet.rows:
        # datetime values are not JSON friendly; print them as ISO text
        safe = {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in values.items()}
        print(f"    row {row_number}: {safe}")
    return EXIT_SUCCESS


def _generate(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    try:
        data = _read_input(args.file, cfg)
        rows = read_spreadsheet(data, cfg.spreadsheet)
    except (OSError, CardGenError) as e:
        logger.error(f"generate: {e}")
        return EXIT_FATAL

    rt = build_runtime(cfg, logo_dir=args.logo_dir)
    session_id = args.session or f"cli_{uuid.uuid4().hex[:12]}"
    try:
        subscription = rt.channel.subscribe(session_id)
    except CardGenError as e:
        logger.error(f"generate: {e}")
        return EXIT_FATAL
    try:
        handle = rt.coordinator.start_job(rows, session_id)
    except CardGenError as e:
        subscription.close()
        logger.error(f"generate: {e}")
        return EXIT_FATAL

    logger.info(f"Rendering {len(rows)} card(s) from {args.file.name} (job={handle.job_id})")
    deadline = None if args.timeout is None else time.monotonic() + args.timeout
    with subscription, ProgressTracker(len(rows)) as progress:
        while True:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                logger.error(f"generate: job {handle.job_id} still running after {args.timeout}s")
                return EXIT_FATAL
            event = subscription.get(timeout=0.5 if remaining is None else min(remaining, 0.5))
            if event is None:
                continue
            if event.name == EVENT_PROGRESS:
                progress.update_from(ProgressEvent.from_dict(session_id, event.data))
            if event.is_terminal:
                break
    try:
        remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
        job = handle.wait(remaining)
    except TimeoutError as e:
        logger.error(f"generate: {e}")
        return EXIT_FATAL

    if job.status is JobStatus.FAILED:
        row = "-" if job.failed_row is None else job.failed_row
        logger.error(f"job {job.job_id} failed at row {row}: {job.error}")
        return EXIT_JOB_FAILED

    archive = rt.coordinator.get_result(job.job_id)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(archive, args.output)
        archive = args.output
    if args.journal:
        try:
            pdf = compose_for_job(rt.coordinator, rt.composer, job.job_id)
        except CardGenError as e:
            logger.error(f"journal: {e}")
            return EXIT_FATAL
        args.journal.parent.mkdir(parents=True, exist_ok=True)
        args.journal.write_bytes(pdf)
        logger.info(f"Journal written: {args.journal}")
    print(archive)
    return EXIT_SUCCESS


def _serve(args: argparse.Namespace, cfg: AppConfig, logger) -> int:
    from cardgen.web.app import create_app

    app = create_app(cfg)
    host = args.host or cfg.server.host
    port = args.port or cfg.server.port
    logger.info(f"Serving on http://{host}:{port}")
    app.run(host=host, port=port, threaded=True)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # Only read sys.argv when no list was given (tests call main([...]))
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"))

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    try:
        cfg = _load_app_config(args.config, logger)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "inspect":
        return _inspect(args, cfg, logger)
    if args.command == "generate":
        return _generate(args, cfg, logger)
    return _serve(args, cfg, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
