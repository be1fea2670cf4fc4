from __future__ import annotations

import json
import pathlib

import jsonschema
import pytest

from cardgen.models.error_record import ErrorRecord

"""Error log JSON Lines schema contract."""

SCHEMA_PATH = pathlib.Path(__file__).resolve().parents[2] / "cardgen" / "config" / "error_log_schema.json"


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def test_error_log_schema_valid_example(schema):
    record = {
        "timestamp": "2025-09-26T10:12:33Z",
        "session": "session_1718000000000_k3j9x0a1b",
        "job": "4f1c2a9e0b7d4c6e8a3f5b1d2c4e6a8b",
        "row": 2,
        "error_type": "RENDER_ERROR",
        "message": "row 2: image composition failed: cannot identify image file",
    }
    jsonschema.validate(record, schema)


def test_error_log_schema_rejects_extra_key(schema):
    record = {
        "timestamp": "2025-09-26T10:12:33Z",
        "session": "s1",
        "job": "j1",
        "row": -1,
        "error_type": "STALLED_JOB",
        "message": "no card completed within 120.0s",
        "extra": "not allowed",
    }
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, schema)


@pytest.mark.parametrize(
    ("field", "value"),
    [("row", -2), ("error_type", "render error"), ("timestamp", "2025-09-26 10:12:33")],
)
def test_error_log_schema_rejects_bad_values(schema, field, value):
    record = {
        "timestamp": "2025-09-26T10:12:33Z",
        "session": "s1",
        "job": "j1",
        "row": 0,
        "error_type": "RENDER_ERROR",
        "message": "x",
    }
    record[field] = value
    with pytest.raises(jsonschema.exceptions.ValidationError):
        jsonschema.validate(record, schema)


def test_created_records_match_schema(schema):
    for row, error_type in ((3, "RENDER_ERROR"), (-1, "ARCHIVE_ERROR")):
        line = ErrorRecord.create("s1", "j1", row, error_type, "Não foi possível").to_json_line()
        jsonschema.validate(json.loads(line), schema)
