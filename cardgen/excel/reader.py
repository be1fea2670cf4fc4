from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Any

import pandas as pd

from cardgen.errors import InvalidFormatError, MalformedContentError, TooLargeError
from cardgen.models.config_models import SpreadsheetConfig
from cardgen.models.row_record import RowRecord

"""Spreadsheet parser.

Two stages, both run before a job exists:

1. ``validate_spreadsheet_upload``: size ceiling, extension, declared content type
   and an OOXML content sniff. Nothing is parsed here.
2. ``read_spreadsheet``: pandas/openpyxl read of the first (or configured) sheet,
   header at ``header_row``, every data row validated. The first invalid row aborts
   the whole parse; there is no partial result.
"""

__all__ = [
    "ALLOWED_EXTENSIONS",
    "SheetData",
    "validate_spreadsheet_upload",
    "read_workbook",
    "normalize_sheet",
    "to_row_records",
    "read_spreadsheet",
    "inspect_spreadsheet",
]

ALLOWED_EXTENSIONS = {".xlsx"}
ALLOWED_CONTENT_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/octet-stream",
    "application/zip",
    "application/x-zip-compressed",
}
_ZIP_MAGIC = b"PK\x03\x04"


@dataclass
class SheetData:
    sheet_name: str
    columns: list[str]
    # (sheet row number, column -> value), blank rows already dropped
    rows: list[tuple[int, dict[str, Any]]] = field(default_factory=list)


def validate_spreadsheet_upload(
    name: str,
    data: bytes,
    content_type: str | None,
    max_bytes: int,
) -> None:
    """Reject an upload before any parsing work.

    Raises:
        InvalidFormatError: extension, content type or content is not an .xlsx workbook
        TooLargeError: ``len(data) > max_bytes`` (exactly ``max_bytes`` is accepted)
    """
    suffix = PurePath(name or "").suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise InvalidFormatError(f"extension not allowed: {name!r}")

    size = len(data)
    if size > max_bytes:
        raise TooLargeError(f"spreadsheet {name!r} has {size} bytes (limit {max_bytes})", size=size, limit=max_bytes)

    media_type = (content_type or "").split(";")[0].strip().lower()
    if media_type and media_type not in ALLOWED_CONTENT_TYPES:
        raise InvalidFormatError(f"content type not allowed: {media_type!r}")

    if not data.startswith(_ZIP_MAGIC):
        raise InvalidFormatError(f"{name!r} is not a zip container")
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            names = set(zf.namelist())
    except zipfile.BadZipFile as e:
        raise InvalidFormatError(f"{name!r} is not a readable zip container: {e}") from e
    if "[Content_Types].xml" not in names or "xl/workbook.xml" not in names:
        raise InvalidFormatError(f"{name!r} is not an OOXML workbook")


def read_workbook(
    data: bytes, sheet: str | None = None, keep_na_strings: tuple[str, ...] | list[str] | None = None
) -> tuple[str, pd.DataFrame]:
    """Read one sheet without a header, returning (sheet name, raw DataFrame).

    Parameters
    ----------
    data: raw .xlsx bytes
    sheet: sheet name (None -> first sheet)
    keep_na_strings: strings excluded from pandas' default NaN conversion (e.g. 'NA')
    """
    # pandas' default NA strings minus the ones the caller wants to keep
    import pandas._libs.parsers as parsers

    if keep_na_strings:
        na_values = list(parsers.STR_NA_VALUES - set(keep_na_strings))
        keep_default_na = False
    else:
        na_values = None
        keep_default_na = True

    try:
        xls = pd.ExcelFile(io.BytesIO(data), engine="openpyxl")
    except Exception as e:
        raise MalformedContentError(f"unreadable workbook: {e}") from e

    with xls:
        if not xls.sheet_names:
            raise MalformedContentError("workbook has no sheets")
        sheet_name = sheet if sheet is not None else str(xls.sheet_names[0])
        if sheet_name not in [str(s) for s in xls.sheet_names]:
            raise MalformedContentError(f"sheet {sheet_name!r} not found")
        try:
            df = xls.parse(
                sheet_name,
                header=None,
                dtype=object,
                keep_default_na=keep_default_na,
                na_values=na_values,
            )
        except Exception as e:
            raise MalformedContentError(f"sheet {sheet_name!r} could not be read: {e}") from e
    return sheet_name, df


def _clean_value(val: Any) -> Any:
    if val is None:
        return None
    if not isinstance(val, str) and pd.isna(val):
        return None
    if isinstance(val, str):
        stripped = val.strip()
        return stripped or None
    if isinstance(val, pd.Timestamp):
        return val.to_pydatetime()
    return val


def normalize_sheet(df: pd.DataFrame, sheet_name: str, header_row: int = 1) -> SheetData:
    """Apply the header row and collect the data rows below it.

    Rows whose cells are all empty are not data rows and are dropped; every
    other row is kept, valid or not, for ``to_row_records`` to judge.
    """
    if df.shape[0] < header_row:
        raise MalformedContentError(f"sheet '{sheet_name}' lacks header row {header_row}")

    header_series = df.iloc[header_row - 1]
    columns = ["" if _clean_value(c) is None else str(c).strip() for c in header_series.tolist()]
    if not any(columns):
        raise MalformedContentError(f"sheet '{sheet_name}' header row {header_row} is empty")

    rows: list[tuple[int, dict[str, Any]]] = []
    for offset, raw in enumerate(df.iloc[header_row:].itertuples(index=False, name=None)):
        cleaned = [_clean_value(v) for v in raw]
        if all(v is None for v in cleaned):
            continue
        row_dict: dict[str, Any] = {}
        for col, val in zip(columns, cleaned, strict=False):
            if not col:
                continue
            row_dict[col] = val
        rows.append((header_row + 1 + offset, row_dict))

    return SheetData(sheet_name=sheet_name, columns=[c for c in columns if c], rows=rows)


# 1.234.567,89 / 1.299 (thousands dots, optional decimal comma)
_BR_GROUPED_RE = re.compile(r"^-?\d{1,3}(?:\.\d{3})+(?:,\d+)?$")
# 12,90 / 1299
_BR_PLAIN_RE = re.compile(r"^-?\d+(?:,\d+)?$")
# 12.90 (single dot, not a group of three)
_DOT_DECIMAL_RE = re.compile(r"^-?\d+\.\d+$")


def _to_number(value: Any) -> float | int | None:
    """Numeric cell value, or None when the text is not an unambiguous number.

    Text prices follow Brazilian notation: ``.`` groups thousands and ``,`` marks
    decimals. A lone ``.`` followed by exactly three digits is a thousands
    separator. Mixed forms such as ``1,299.90`` are rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if not isinstance(value, str):
        return None
    text = value.replace("R$", "").replace(" ", "").replace(" ", "")
    if _BR_GROUPED_RE.match(text):
        return float(text.replace(".", "").replace(",", "."))
    if _BR_PLAIN_RE.match(text):
        return float(text.replace(",", "."))
    if _DOT_DECIMAL_RE.match(text):
        return float(text)
    return None


def to_row_records(sheet: SheetData, config: SpreadsheetConfig) -> list[RowRecord]:
    """Validate normalized rows and freeze them as RowRecords.

    Raises:
        MalformedContentError: missing columns, no data rows, or the first invalid row
    """
    missing = set(config.required_columns) - set(sheet.columns)
    if missing:
        raise MalformedContentError(f"sheet '{sheet.sheet_name}' missing columns: {sorted(missing)}")
    if not sheet.rows:
        raise MalformedContentError(f"sheet '{sheet.sheet_name}' has no data rows")

    numeric = set(config.numeric_columns)
    records: list[RowRecord] = []
    for index, (row_number, values) in enumerate(sheet.rows):
        for col in config.required_columns:
            if values.get(col) is None:
                raise MalformedContentError(
                    f"row {index} (sheet row {row_number}): required column '{col}' is empty",
                    row_index=index,
                    row_number=row_number,
                )
        for col in numeric:
            if values.get(col) is None:
                continue
            number = _to_number(values[col])
            if number is None:
                raise MalformedContentError(
                    f"row {index} (sheet row {row_number}): column '{col}' is not numeric: {values[col]!r}",
                    row_index=index,
                    row_number=row_number,
                )
            values[col] = number
        records.append(RowRecord(index=index, row_number=row_number, values=values))
    return records


def read_spreadsheet(data: bytes, config: SpreadsheetConfig) -> list[RowRecord]:
    """Parse validated upload bytes into the ordered RowRecord sequence."""
    sheet_name, df = read_workbook(data, sheet=config.sheet, keep_na_strings=config.keep_na_strings)
    sheet = normalize_sheet(df, sheet_name, header_row=config.header_row)
    return to_row_records(sheet, config)


def inspect_spreadsheet(data: bytes, config: SpreadsheetConfig, limit: int = 3) -> SheetData:
    """Header and first ``limit`` rows, without row validation."""
    sheet_name, df = read_workbook(data, sheet=config.sheet, keep_na_strings=config.keep_na_strings)
    sheet = normalize_sheet(df, sheet_name, header_row=config.header_row)
    sheet.rows = sheet.rows[:limit]
    return sheet
