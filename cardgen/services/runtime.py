from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

from cardgen.assets.store import LogoStore
from cardgen.errors import UploadNotFoundError
from cardgen.logging.error_log import ErrorLogBuffer
from cardgen.models.config_models import AppConfig
from cardgen.render.card import CardRenderer
from .channel import ProgressChannel
from .coordinator import JobCoordinator
from .journal import JournalComposer

"""Process-wide wiring: one channel, one coordinator, one logo store per app."""

__all__ = [
    "Runtime",
    "UploadArea",
    "build_runtime",
]

logger = logging.getLogger(__name__)

_UPLOAD_REF_RE = re.compile(r"^[0-9a-f]{32}\.xlsx$")


class UploadArea:
    """Validated spreadsheet uploads waiting for a generate request.

    Clients only ever see the opaque reference (``<hex>.xlsx``), never a path.
    A reference is single use: ``discard`` runs once the generate request has
    parsed or rejected it. References never consumed are dropped by
    ``purge_stale`` after ``max_age_seconds``.
    """

    def __init__(self, upload_dir: Path, max_age_seconds: float = 3600.0) -> None:
        self.upload_dir = Path(upload_dir)
        self.max_age_seconds = max_age_seconds

    def _path(self, ref: str) -> Path:
        if not isinstance(ref, str) or not _UPLOAD_REF_RE.match(ref):
            raise UploadNotFoundError(f"bad upload reference: {ref!r}")
        return self.upload_dir / ref

    def store(self, data: bytes) -> str:
        self.purge_stale()
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        ref = f"{uuid.uuid4().hex}.xlsx"
        (self.upload_dir / ref).write_bytes(data)
        logger.info("Spreadsheet stored: %s (%d bytes)", ref, len(data))
        return ref

    def load(self, ref: str) -> bytes:
        path = self._path(ref)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise UploadNotFoundError(f"upload {ref} not found") from e

    def discard(self, ref: str) -> None:
        path = self._path(ref)
        path.unlink(missing_ok=True)
        logger.debug("Spreadsheet discarded: %s", ref)

    def purge_stale(self, now: float | None = None) -> list[str]:
        """Delete stored uploads older than ``max_age_seconds``; returns their refs."""
        if not self.upload_dir.is_dir():
            return []
        cutoff = (now if now is not None else time.time()) - self.max_age_seconds
        purged = []
        for path in self.upload_dir.iterdir():
            if not _UPLOAD_REF_RE.match(path.name):
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    purged.append(path.name)
            except FileNotFoundError:
                # consumed concurrently
                continue
        if purged:
            logger.info("Purged %d stale upload(s)", len(purged))
        return purged


@dataclass
class Runtime:
    config: AppConfig
    channel: ProgressChannel
    renderer: CardRenderer
    logo_store: LogoStore
    coordinator: JobCoordinator
    composer: JournalComposer
    uploads: UploadArea
    error_log: ErrorLogBuffer


def build_runtime(config: AppConfig, logo_dir: Path | None = None) -> Runtime:
    channel = ProgressChannel()
    renderer = CardRenderer(config.render, config.spreadsheet)
    logo_store = LogoStore(logo_dir or config.storage.logo_dir, config.limits.max_logo_bytes)
    error_log = ErrorLogBuffer(config.storage.logs_dir)
    coordinator = JobCoordinator(config, renderer, channel, logo_store=logo_store, error_log=error_log)
    return Runtime(
        config=config,
        channel=channel,
        renderer=renderer,
        logo_store=logo_store,
        coordinator=coordinator,
        composer=JournalComposer(config.journal),
        uploads=UploadArea(config.storage.upload_dir, config.jobs.retention_seconds),
        error_log=error_log,
    )
