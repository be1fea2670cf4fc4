from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

"""Config dataclasses for the card generator.

Built by ``cardgen.config.loader.load_config`` after the YAML has been validated
against ``config_schema.json``. Every section has defaults so a minimal config file
(or none of the optional sections) is enough to run.
"""

MIB = 1024 * 1024


@dataclass(frozen=True)
class StorageConfig:
    work_dir: Path = Path("./var")
    logo_dir: Path = Path("./var/logos")

    @property
    def upload_dir(self) -> Path:
        return self.work_dir / "uploads"

    @property
    def jobs_dir(self) -> Path:
        return self.work_dir / "jobs"

    @property
    def logs_dir(self) -> Path:
        return self.work_dir / "logs"


@dataclass(frozen=True)
class LimitsConfig:
    max_spreadsheet_bytes: int = 10 * MIB
    max_logo_bytes: int = 5 * MIB


@dataclass(frozen=True)
class SpreadsheetConfig:
    """How an uploaded sheet maps to rows.

    ``required_columns`` must be present in the header and non-empty on every row;
    ``numeric_columns`` must hold numbers when filled.
    """
    sheet: str | None = None  # None -> first sheet
    header_row: int = 1  # 1-based
    required_columns: tuple[str, ...] = ("codigo", "descricao", "preco")
    numeric_columns: tuple[str, ...] = ("preco",)
    label_column: str = "descricao"
    code_column: str = "codigo"
    price_column: str = "preco"
    supplier_column: str | None = "fornecedor"
    detail_columns: tuple[str, ...] = ("unidade", "validade")
    keep_na_strings: tuple[str, ...] = ("NA", "N/A")


@dataclass(frozen=True)
class RenderConfig:
    format: str = "png"  # png | pdf
    width: int = 800
    height: int = 1000
    dpi: int = 150
    background: str = "#ffffff"
    accent: str = "#1d4ed8"
    text_color: str = "#0f172a"
    price_prefix: str = "R$"
    font_path: str | None = None


@dataclass(frozen=True)
class JobsConfig:
    max_workers: int = 4
    stall_timeout_seconds: float = 120.0
    retention_seconds: float = 3600.0
    max_retained_jobs: int = 50


@dataclass(frozen=True)
class JournalConfig:
    columns: int = 2
    rows: int = 3
    page_width: int = 1240  # A4 @ 150 dpi
    page_height: int = 1754
    margin: int = 60
    gutter: int = 30
    dpi: int = 150
    title: str = "Jornal de Ofertas"


@dataclass(frozen=True)
class ServerConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    sse_keepalive_seconds: float = 15.0


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    spreadsheet: SpreadsheetConfig = field(default_factory=SpreadsheetConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    jobs: JobsConfig = field(default_factory=JobsConfig)
    journal: JournalConfig = field(default_factory=JournalConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
