from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = [
    "Artifact",
    "ArtifactFormat",
]


class ArtifactFormat(Enum):
    PNG = "png"
    PDF = "pdf"

    @property
    def media_type(self) -> str:
        return "application/pdf" if self is ArtifactFormat.PDF else "image/png"


@dataclass(frozen=True)
class Artifact:
    """One rendered card.

    Produced by the card renderer, owned by its generation job until the job's
    archive is written.
    """
    index: int  # source RowRecord.index
    label: str
    filename: str
    data: bytes
    format: ArtifactFormat = ArtifactFormat.PNG
