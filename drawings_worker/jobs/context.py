"""
What a job handler gets handed, and what it hands back.

Handlers receive an explicitly constructed JobContext instead of reaching
for module globals. They return a report listing every error they chose to
swallow, so degraded runs are visible without scraping logs.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings
from ..core.redis import Notifier
from ..core.storage import ObjectStore
from ..services.pdf_tools import PdfToolkit

logger = logging.getLogger(__name__)


@dataclass
class JobContext:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    store: ObjectStore
    pdf_tools: PdfToolkit
    notifier: Notifier


@dataclass(frozen=True)
class PipelineWarning:
    """One best-effort failure that was logged and swallowed."""

    stage: str
    message: str
    page_index: Optional[int] = None

    def __str__(self) -> str:
        where = f" (page {self.page_index})" if self.page_index is not None else ""
        return f"{self.stage}{where}: {self.message}"


@dataclass
class _Report:
    warnings: list[PipelineWarning] = field(default_factory=list)

    def warn(self, stage: str, message: str, page_index: Optional[int] = None) -> None:
        warning = PipelineWarning(stage=stage, message=message, page_index=page_index)
        self.warnings.append(warning)
        logger.warning("%s", warning)

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)

    def stages(self) -> list[str]:
        return [w.stage for w in self.warnings]


@dataclass
class IngestionReport(_Report):
    drawing_set_id: str = ""
    page_count: int = 0
    pages_rasterized: int = 0
    sheets_created: int = 0
    tile_jobs_enqueued: int = 0
    base_path: Optional[str] = None

    def summary(self) -> str:
        return (
            f"set={self.drawing_set_id} pages={self.page_count} "
            f"rasterized={self.pages_rasterized} sheets={self.sheets_created} "
            f"tile_jobs={self.tile_jobs_enqueued} warnings={len(self.warnings)}"
        )


@dataclass
class TilingReport(_Report):
    sheet_version_id: str = ""
    skipped: bool = False
    reused: bool = False
    levels: int = 0
    tile_count: int = 0
    width: int = 0
    height: int = 0
    uploads: int = 0
    sets_ready: list[str] = field(default_factory=list)

    def summary(self) -> str:
        if self.skipped:
            return f"version={self.sheet_version_id} skipped (tiles already present)"
        if self.reused:
            return (
                f"version={self.sheet_version_id} {self.width}x{self.height} "
                f"reused existing pyramid ready_sets={len(self.sets_ready)}"
            )
        return (
            f"version={self.sheet_version_id} {self.width}x{self.height} "
            f"levels={self.levels} tiles={self.tile_count} "
            f"ready_sets={len(self.sets_ready)} warnings={len(self.warnings)}"
        )
