from __future__ import annotations

import io
import json
import logging
import re
from collections.abc import Sequence

from PIL import Image, ImageDraw, ImageFont
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from cardgen.errors import CardGenError, CompositionError, NoArtifactsAvailableError
from cardgen.models.artifact import Artifact, ArtifactFormat
from cardgen.models.config_models import JournalConfig
from cardgen.models.generation_job import GenerationJob, JobStatus
from .coordinator import JobCoordinator

"""Journal composer: all cards of a job in one multi-page PDF.

Raster cards are laid out ``columns x rows`` per page in row order; a PDF card
takes its own page(s), closing the raster page in progress. Each card gets one
outline entry ``"<index> <label>"`` pointing at its page, which is what
``read_journal_order`` reads back.
"""

__all__ = [
    "JournalComposer",
    "read_journal_order",
    "load_job_artifacts",
    "compose_for_job",
]

logger = logging.getLogger(__name__)

_OUTLINE_INDEX_RE = re.compile(r"^(\d+)\s")


class JournalComposer:
    def __init__(self, config: JournalConfig) -> None:
        self.config = config

    @property
    def cards_per_page(self) -> int:
        return self.config.columns * self.config.rows

    def _cell_boxes(self) -> list[tuple[int, int, int, int]]:
        cfg = self.config
        top = cfg.margin * 2  # title band
        cell_w = (cfg.page_width - 2 * cfg.margin - (cfg.columns - 1) * cfg.gutter) // cfg.columns
        cell_h = (cfg.page_height - top - cfg.margin - (cfg.rows - 1) * cfg.gutter) // cfg.rows
        if cell_w <= 0 or cell_h <= 0:
            raise CompositionError(f"page {cfg.page_width}x{cfg.page_height} too small for a {cfg.columns}x{cfg.rows} grid")
        boxes = []
        for r in range(cfg.rows):
            for c in range(cfg.columns):
                left = cfg.margin + c * (cell_w + cfg.gutter)
                upper = top + r * (cell_h + cfg.gutter)
                boxes.append((left, upper, left + cell_w, upper + cell_h))
        return boxes

    def _raster_page(self, cards: Sequence[Artifact], page_no: int) -> bytes:
        cfg = self.config
        page = Image.new("RGB", (cfg.page_width, cfg.page_height), "#ffffff")
        draw = ImageDraw.Draw(page)
        draw.text(
            (cfg.page_width // 2, cfg.margin),
            f"{cfg.title} - {page_no}",
            font=ImageFont.load_default(max(12, cfg.margin // 2)),
            fill="#0f172a",
            anchor="mm",
        )
        for card, (left, upper, right, lower) in zip(cards, self._cell_boxes(), strict=False):
            with Image.open(io.BytesIO(card.data)) as src:
                thumb = src.convert("RGB")
            thumb.thumbnail((right - left, lower - upper), Image.Resampling.LANCZOS)
            x = left + (right - left - thumb.width) // 2
            y = upper + (lower - upper - thumb.height) // 2
            page.paste(thumb, (x, y))
        buf = io.BytesIO()
        page.save(buf, format="PDF", resolution=float(cfg.dpi), creationDate=None, modDate=None)
        return buf.getvalue()

    def compose(self, artifacts: Sequence[Artifact]) -> bytes:
        """Journal PDF bytes for ``artifacts`` (any order; laid out by row index).

        Raises:
            NoArtifactsAvailableError: empty input
            CompositionError: an artifact could not be read or the PDF not written
        """
        if not artifacts:
            raise NoArtifactsAvailableError("no artifacts to compose")
        ordered = sorted(artifacts, key=lambda a: a.index)

        writer = PdfWriter()
        outline: list[tuple[Artifact, int]] = []
        batch: list[Artifact] = []

        def flush_batch() -> None:
            if not batch:
                return
            page_index = len(writer.pages)
            page_pdf = self._raster_page(batch, page_index + 1)
            writer.append(PdfReader(io.BytesIO(page_pdf)))
            outline.extend((a, page_index) for a in batch)
            batch.clear()

        try:
            for artifact in ordered:
                if artifact.format is ArtifactFormat.PDF:
                    flush_batch()
                    outline.append((artifact, len(writer.pages)))
                    writer.append(PdfReader(io.BytesIO(artifact.data)))
                    continue
                batch.append(artifact)
                if len(batch) == self.cards_per_page:
                    flush_batch()
            flush_batch()

            for artifact, page_index in outline:
                writer.add_outline_item(f"{artifact.index} {artifact.label}", page_index)
            writer.add_metadata({"/Title": self.config.title, "/Producer": "cardgen"})

            buf = io.BytesIO()
            writer.write(buf)
        except CardGenError:
            raise
        except (OSError, ValueError, PyPdfError) as e:
            raise CompositionError(f"journal composition failed: {e}") from e
        logger.info("Journal composed: %d card(s), %d page(s)", len(ordered), len(writer.pages))
        return buf.getvalue()


def read_journal_order(pdf_bytes: bytes) -> list[int]:
    """Card indices in journal order, read back from the outline."""
    reader = PdfReader(io.BytesIO(pdf_bytes))
    order: list[int] = []
    for item in reader.outline:
        if isinstance(item, list):  # nested entries are not produced
            continue
        m = _OUTLINE_INDEX_RE.match(item.title or "")
        if m:
            order.append(int(m.group(1)))
    return order


def load_job_artifacts(job: GenerationJob) -> list[Artifact]:
    """Reload a succeeded job's cards from its scratch dir, in manifest order."""
    try:
        manifest = json.loads(job.manifest_path.read_text(encoding="utf-8"))
        artifacts = []
        for card in manifest["cards"]:
            data = (job.cards_dir / card["filename"]).read_bytes()
            artifacts.append(
                Artifact(
                    index=int(card["index"]),
                    label=card["label"],
                    filename=card["filename"],
                    data=data,
                    format=ArtifactFormat(card.get("format", "png")),
                )
            )
    except FileNotFoundError as e:
        raise NoArtifactsAvailableError(f"cards of job {job.job_id} are gone: {e}") from e
    except (OSError, ValueError, KeyError, TypeError) as e:
        raise CompositionError(f"manifest of job {job.job_id} unreadable: {e}") from e
    return artifacts


def compose_for_job(coordinator: JobCoordinator, composer: JournalComposer, job_id: str | None = None) -> bytes:
    """Journal of ``job_id``, or of the most recent succeeded job when omitted.

    Raises:
        NoArtifactsAvailableError: no succeeded job (or the named job has not succeeded)
        JobNotFoundError: unknown ``job_id``
        CompositionError: composition failed
    """
    if job_id:
        job = coordinator.get_job(job_id)
        if job.status is not JobStatus.SUCCEEDED:
            raise NoArtifactsAvailableError(f"job {job_id} is {job.status.value}")
    else:
        job = coordinator.latest_succeeded_job()
        if job is None:
            raise NoArtifactsAvailableError("no completed job has artifacts")
    return composer.compose(load_job_artifacts(job))

