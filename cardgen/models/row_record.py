from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

"""RowRecord model: one parsed spreadsheet line.

The sequence position (``index``) drives card numbering and journal page order;
``row_number`` is kept only for error messages that point the user back to the sheet.
"""

__all__ = [
    "RowRecord",
]


@dataclass(frozen=True)
class RowRecord:
    """Immutable ordered mapping of column name -> scalar value for one data row."""
    index: int  # 0-based position in the parsed sequence
    row_number: int  # 1-based row in the source sheet
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Copy + freeze so callers cannot mutate the parsed row afterwards
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, column: str, default: Any = None) -> Any:
        value = self.values.get(column, default)
        return default if value is None else value

    def text(self, column: str) -> str:
        """Column value as display text ("" when empty)."""
        value = self.values.get(column)
        if value is None:
            return ""
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()

    @property
    def columns(self) -> list[str]:
        return list(self.values.keys())
