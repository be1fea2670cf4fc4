from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

__all__ = [
    "LogoAsset",
    "BLANK_LOGO_NAME",
]

# Sentinel asset: resolvable like any logo, never listed
BLANK_LOGO_NAME = "blank.png"


@dataclass(frozen=True)
class LogoAsset:
    """A named logo image in the asset store. Read-only once loaded."""
    name: str
    data: bytes
    media_type: str
    path: Path | None = None

    @property
    def is_blank(self) -> bool:
        return self.name == BLANK_LOGO_NAME
