# Shared pytest fixtures
from __future__ import annotations

import io
import tempfile
from collections.abc import Callable
from pathlib import Path

import pandas as pd
import pytest
from PIL import Image

from cardgen.models.config_models import (
    AppConfig,
    JobsConfig,
    JournalConfig,
    RenderConfig,
    StorageConfig,
)

HEADER = ["codigo", "descricao", "preco", "fornecedor", "unidade", "validade"]

SAMPLE_ROWS = [
    ["1001", "Arroz Tipo 1 5kg", 24.9, "Acme", "pct", "31/12"],
    ["1002", "Feijão Carioca 1kg", "8,49", "Acme", "pct", "31/12"],
    ["1003", "Café Torrado 500g", 17.5, "Bom Grão", "un", None],
]


def build_xlsx(rows: list[list[object]], sheet: str = "Ofertas") -> bytes:
    """Workbook bytes with ``rows`` written as-is (first row is the header)."""
    buf = io.BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet, header=False, index=False)
    return buf.getvalue()


def build_png(size: tuple[int, int] = (40, 20), color: str = "#cc0000") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "var").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def make_spreadsheet() -> Callable[..., bytes]:
    return build_xlsx


@pytest.fixture()
def sample_xlsx() -> bytes:
    return build_xlsx([HEADER, *SAMPLE_ROWS])


@pytest.fixture()
def logo_png() -> bytes:
    return build_png()


@pytest.fixture()
def app_config(temp_workdir: Path) -> AppConfig:
    """Small cards and a short stall timeout so jobs finish quickly."""
    work_dir = temp_workdir / "var"
    return AppConfig(
        storage=StorageConfig(work_dir=work_dir, logo_dir=work_dir / "logos"),
        render=RenderConfig(width=200, height=250, dpi=72),
        jobs=JobsConfig(max_workers=2, stall_timeout_seconds=10.0, retention_seconds=3600.0, max_retained_jobs=50),
        journal=JournalConfig(page_width=620, page_height=877, margin=30, gutter=15, dpi=72),
    )


@pytest.fixture()
def sample_config_yaml() -> str:
    return """storage:
  work_dir: ./var
limits:
  max_spreadsheet_bytes: 1048576
render:
  width: 200
  height: 250
  dpi: 72
jobs:
  max_workers: 2
  stall_timeout_seconds: 10
journal:
  page_width: 620
  page_height: 877
  margin: 30
  gutter: 15
  dpi: 72
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "cardgen.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch):
    for name in ("CARDGEN_CONFIG", "CARDGEN_WORK_DIR", "CARDGEN_MAX_WORKERS"):
        monkeypatch.delenv(name, raising=False)
