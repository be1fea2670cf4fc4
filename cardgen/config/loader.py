from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from cardgen.models.config_models import (
    AppConfig,
    JobsConfig,
    JournalConfig,
    LimitsConfig,
    RenderConfig,
    ServerConfig,
    SpreadsheetConfig,
    StorageConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (default ``config/cardgen.yml``)
- Validate against ``config_schema.json`` (unknown keys rejected)
- Apply defaults for every optional section
- Apply environment overrides (``CARDGEN_WORK_DIR``, ``CARDGEN_MAX_WORKERS``)
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/cardgen.yml")

ENV_CONFIG_PATH = "CARDGEN_CONFIG"
ENV_WORK_DIR = "CARDGEN_WORK_DIR"
ENV_MAX_WORKERS = "CARDGEN_MAX_WORKERS"


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: schema file missing or unreadable, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def resolve_config_path(explicit: str | os.PathLike[str] | None = None) -> Path:
    """CLI flag > CARDGEN_CONFIG > config/cardgen.yml."""
    if explicit:
        return Path(explicit)
    env_path = os.getenv(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    return data.get(key) or {}


def _tuple(raw: dict[str, Any], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = raw.get(key)
    return default if value is None else tuple(str(v) for v in value)


def build_config(data: dict[str, Any]) -> AppConfig:
    """Turn validated YAML data into the frozen AppConfig tree."""
    storage_raw = _section(data, "storage")
    work_dir = Path(os.getenv(ENV_WORK_DIR) or storage_raw.get("work_dir", "./var"))
    logo_dir = Path(storage_raw["logo_dir"]) if storage_raw.get("logo_dir") else work_dir / "logos"
    storage = StorageConfig(work_dir=work_dir, logo_dir=logo_dir)

    defaults_limits = LimitsConfig()
    limits_raw = _section(data, "limits")
    limits = LimitsConfig(
        max_spreadsheet_bytes=limits_raw.get("max_spreadsheet_bytes", defaults_limits.max_spreadsheet_bytes),
        max_logo_bytes=limits_raw.get("max_logo_bytes", defaults_limits.max_logo_bytes),
    )

    d_sheet = SpreadsheetConfig()
    sheet_raw = _section(data, "spreadsheet")
    spreadsheet = SpreadsheetConfig(
        sheet=sheet_raw.get("sheet", d_sheet.sheet),
        header_row=sheet_raw.get("header_row", d_sheet.header_row),
        required_columns=_tuple(sheet_raw, "required_columns", d_sheet.required_columns),
        numeric_columns=_tuple(sheet_raw, "numeric_columns", d_sheet.numeric_columns),
        label_column=sheet_raw.get("label_column", d_sheet.label_column),
        code_column=sheet_raw.get("code_column", d_sheet.code_column),
        price_column=sheet_raw.get("price_column", d_sheet.price_column),
        supplier_column=sheet_raw.get("supplier_column", d_sheet.supplier_column),
        detail_columns=_tuple(sheet_raw, "detail_columns", d_sheet.detail_columns),
        keep_na_strings=_tuple(sheet_raw, "keep_na_strings", d_sheet.keep_na_strings),
    )

    render = RenderConfig(**_section(data, "render"))

    jobs_raw = dict(_section(data, "jobs"))
    env_workers = os.getenv(ENV_MAX_WORKERS)
    if env_workers:
        try:
            jobs_raw["max_workers"] = int(env_workers)
        except ValueError as e:
            raise ConfigError(f"{ENV_MAX_WORKERS} must be an integer: {env_workers!r}") from e
        if jobs_raw["max_workers"] < 1:
            raise ConfigError(f"{ENV_MAX_WORKERS} must be >= 1")
    jobs = JobsConfig(**jobs_raw)

    journal = JournalConfig(**_section(data, "journal"))
    server = ServerConfig(**_section(data, "server"))

    return AppConfig(
        storage=storage,
        limits=limits,
        spreadsheet=spreadsheet,
        render=render,
        jobs=jobs,
        journal=journal,
        server=server,
    )


def load_config(path: Path) -> AppConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)
    return build_config(data)
