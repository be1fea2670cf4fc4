"""Domain models for the spreadsheet -> card generator.

Value objects passed between the parser, renderer, coordinator, progress channel
and journal composer, plus the configuration tree.
"""

from .artifact import Artifact, ArtifactFormat
from .config_models import (
    AppConfig,
    JobsConfig,
    JournalConfig,
    LimitsConfig,
    RenderConfig,
    ServerConfig,
    SpreadsheetConfig,
    StorageConfig,
)
from .generation_job import GenerationJob, InvalidTransitionError, JobStatus
from .logo_asset import BLANK_LOGO_NAME, LogoAsset
from .progress_event import ProgressEvent
from .row_record import RowRecord

__all__ = [
    # Configuration models
    "AppConfig",
    "JobsConfig",
    "JournalConfig",
    "LimitsConfig",
    "RenderConfig",
    "ServerConfig",
    "SpreadsheetConfig",
    "StorageConfig",
    # Processing models
    "Artifact",
    "ArtifactFormat",
    "BLANK_LOGO_NAME",
    "GenerationJob",
    "InvalidTransitionError",
    "JobStatus",
    "LogoAsset",
    "ProgressEvent",
    "RowRecord",
]
