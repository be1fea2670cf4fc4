from __future__ import annotations

import io
import zipfile

import pytest

from cardgen.errors import InvalidFormatError, MalformedContentError, TooLargeError
from cardgen.excel.reader import (
    inspect_spreadsheet,
    read_spreadsheet,
    validate_spreadsheet_upload,
)
from cardgen.models.config_models import SpreadsheetConfig

HEADER = ["codigo", "descricao", "preco"]
XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def test_validate_accepts_exact_size_limit(sample_xlsx: bytes):
    validate_spreadsheet_upload("ofertas.xlsx", sample_xlsx, XLSX_TYPE, max_bytes=len(sample_xlsx))


def test_validate_rejects_one_byte_over_limit(sample_xlsx: bytes):
    with pytest.raises(TooLargeError) as exc:
        validate_spreadsheet_upload("ofertas.xlsx", sample_xlsx, XLSX_TYPE, max_bytes=len(sample_xlsx) - 1)
    assert exc.value.size == len(sample_xlsx)
    assert exc.value.limit == len(sample_xlsx) - 1


@pytest.mark.parametrize("name", ["ofertas.csv", "ofertas.xls", "ofertas", "ofertas.xlsx.exe"])
def test_validate_rejects_other_extensions(sample_xlsx: bytes, name: str):
    with pytest.raises(InvalidFormatError):
        validate_spreadsheet_upload(name, sample_xlsx, None, max_bytes=10_000_000)


def test_validate_extension_is_case_insensitive(sample_xlsx: bytes):
    validate_spreadsheet_upload("OFERTAS.XLSX", sample_xlsx, None, max_bytes=10_000_000)


def test_validate_rejects_wrong_content_type(sample_xlsx: bytes):
    with pytest.raises(InvalidFormatError):
        validate_spreadsheet_upload("ofertas.xlsx", sample_xlsx, "text/csv", max_bytes=10_000_000)


def test_validate_rejects_renamed_text_file():
    with pytest.raises(InvalidFormatError):
        validate_spreadsheet_upload("ofertas.xlsx", b"codigo,descricao\n1,x\n", None, max_bytes=10_000)


def test_validate_rejects_zip_that_is_not_a_workbook():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("hello.txt", "hi")
    with pytest.raises(InvalidFormatError):
        validate_spreadsheet_upload("ofertas.xlsx", buf.getvalue(), None, max_bytes=10_000)


def test_read_spreadsheet_rows_in_order(sample_xlsx: bytes):
    rows = read_spreadsheet(sample_xlsx, SpreadsheetConfig())
    assert [r.index for r in rows] == [0, 1, 2]
    assert [r.row_number for r in rows] == [2, 3, 4]
    assert rows[0].text("descricao") == "Arroz Tipo 1 5kg"
    assert rows[0].get("preco") == pytest.approx(24.9)
    # "8,49" written as text is read as a number
    assert rows[1].get("preco") == pytest.approx(8.49)
    assert rows[2].get("validade") is None


def test_row_record_values_are_read_only(sample_xlsx: bytes):
    rows = read_spreadsheet(sample_xlsx, SpreadsheetConfig())
    with pytest.raises(TypeError):
        rows[0].values["preco"] = 0  # type: ignore[index]


def test_blank_rows_are_not_data_rows(make_spreadsheet):
    data = make_spreadsheet([
        HEADER,
        ["1", "Arroz", 10],
        [None, None, None],
        ["2", "Feijão", 5],
    ])
    rows = read_spreadsheet(data, SpreadsheetConfig())
    assert [r.text("codigo") for r in rows] == ["1", "2"]
    assert [r.row_number for r in rows] == [2, 4]


def test_missing_required_column(make_spreadsheet):
    data = make_spreadsheet([["codigo", "descricao"], ["1", "Arroz"]])
    with pytest.raises(MalformedContentError, match="preco"):
        read_spreadsheet(data, SpreadsheetConfig())


def test_header_only_sheet_has_no_rows(make_spreadsheet):
    data = make_spreadsheet([HEADER])
    with pytest.raises(MalformedContentError, match="no data rows"):
        read_spreadsheet(data, SpreadsheetConfig())


def test_first_invalid_row_aborts_parse(make_spreadsheet):
    data = make_spreadsheet([
        HEADER,
        ["1", "Arroz", 10],
        ["2", None, 5],
        ["3", "Café", None],
    ])
    with pytest.raises(MalformedContentError) as exc:
        read_spreadsheet(data, SpreadsheetConfig())
    assert exc.value.row_index == 1
    assert exc.value.row_number == 3


def test_non_numeric_price_is_rejected(make_spreadsheet):
    data = make_spreadsheet([HEADER, ["1", "Arroz", "dez reais"]])
    with pytest.raises(MalformedContentError, match="not numeric") as exc:
        read_spreadsheet(data, SpreadsheetConfig())
    assert exc.value.row_index == 0


def test_price_with_currency_and_thousands(make_spreadsheet):
    data = make_spreadsheet([HEADER, ["1", "TV 50", "R$ 1.299,90"]])
    rows = read_spreadsheet(data, SpreadsheetConfig())
    assert rows[0].get("preco") == pytest.approx(1299.90)


@pytest.mark.parametrize("text,expected", [
    ("1.299", 1299),
    ("1.234.567", 1234567),
    ("12,90", 12.90),
    ("R$ 12.90", 12.90),
    ("1299", 1299),
])
def test_price_text_formats(make_spreadsheet, text: str, expected: float):
    data = make_spreadsheet([HEADER, ["1", "TV 50", text]])
    rows = read_spreadsheet(data, SpreadsheetConfig())
    assert rows[0].get("preco") == pytest.approx(expected)


@pytest.mark.parametrize("text", ["1,299.90", "1.29.9", "12,90,1", "1e3", "12.90,5"])
def test_ambiguous_price_text_is_rejected(make_spreadsheet, text: str):
    data = make_spreadsheet([HEADER, ["1", "Arroz", 5], ["2", "TV 50", text]])
    with pytest.raises(MalformedContentError, match="not numeric") as exc:
        read_spreadsheet(data, SpreadsheetConfig())
    assert exc.value.row_index == 1
    assert exc.value.row_number == 3


def test_keep_na_strings(make_spreadsheet):
    data = make_spreadsheet([HEADER + ["unidade"], ["1", "Arroz", 10, "NA"]])
    rows = read_spreadsheet(data, SpreadsheetConfig())
    assert rows[0].get("unidade") == "NA"

    rows = read_spreadsheet(data, SpreadsheetConfig(keep_na_strings=()))
    assert rows[0].get("unidade") is None


def test_configured_header_row(make_spreadsheet):
    data = make_spreadsheet([["Ofertas da semana"], HEADER, ["1", "Arroz", 10]])
    rows = read_spreadsheet(data, SpreadsheetConfig(header_row=2))
    assert len(rows) == 1
    assert rows[0].row_number == 3


def test_unknown_sheet(make_spreadsheet):
    data = make_spreadsheet([HEADER, ["1", "Arroz", 10]])
    with pytest.raises(MalformedContentError, match="not found"):
        read_spreadsheet(data, SpreadsheetConfig(sheet="Outra"))


def test_corrupt_workbook():
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        zf.writestr("[Content_Types].xml", "<broken")
        zf.writestr("xl/workbook.xml", "<broken")
    with pytest.raises(MalformedContentError):
        read_spreadsheet(buf.getvalue(), SpreadsheetConfig())


def test_inspect_returns_header_and_sample(make_spreadsheet):
    data = make_spreadsheet([HEADER] + [[str(i), f"Item {i}", i] for i in range(10)])
    sheet = inspect_spreadsheet(data, SpreadsheetConfig(), limit=3)
    assert sheet.columns == HEADER
    assert len(sheet.rows) == 3
    assert sheet.rows[0][0] == 2
