"""
Drawing sets, revisions, sheets and sheet versions.

A drawing set is one uploaded PDF. Ingestion creates one sheet per page plus
one "Initial" revision; each (sheet, revision) pair gets a sheet version that
the tiling job later fills with a deep-zoom manifest.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import String, Text, Integer, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import OrgBase

SHEET_NUMBER_MAX = 50
SHEET_TITLE_MAX = 255


class DrawingSetStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class DrawingSet(OrgBase):
    __tablename__ = "drawing_sets"

    project_id: Mapped[str] = mapped_column(String, nullable=True, index=True)
    title: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=DrawingSetStatus.PROCESSING.value, index=True
    )  # processing, ready, failed
    source_file_id: Mapped[str] = mapped_column(String, nullable=True)
    total_pages: Mapped[int] = mapped_column(Integer, nullable=True)
    processed_pages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)


class DrawingRevision(OrgBase):
    __tablename__ = "drawing_revisions"

    project_id: Mapped[str] = mapped_column(String, nullable=True)
    drawing_set_id: Mapped[str] = mapped_column(
        String, ForeignKey("drawing_sets.id"), nullable=False, index=True
    )
    revision_label: Mapped[str] = mapped_column(String, nullable=False)
    issued_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=True)


class DrawingSheet(OrgBase):
    __tablename__ = "drawing_sheets"
    __table_args__ = (
        UniqueConstraint("drawing_set_id", "sheet_number", name="drawing_sheets_set_number_key"),
    )

    project_id: Mapped[str] = mapped_column(String, nullable=True)
    drawing_set_id: Mapped[str] = mapped_column(
        String, ForeignKey("drawing_sets.id"), nullable=False, index=True
    )
    sheet_number: Mapped[str] = mapped_column(String(SHEET_NUMBER_MAX), nullable=False)
    sheet_title: Mapped[str] = mapped_column(String(SHEET_TITLE_MAX), nullable=True)
    discipline: Mapped[str] = mapped_column(String, nullable=True)
    # A, S, M, E, P, C, L, I, FP, G, T, SP, D, X
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_revision_id: Mapped[str] = mapped_column(
        String, ForeignKey("drawing_revisions.id"), nullable=True
    )
    share_with_clients: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    share_with_subs: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class DrawingSheetVersion(OrgBase):
    __tablename__ = "drawing_sheet_versions"

    drawing_sheet_id: Mapped[str] = mapped_column(
        String, ForeignKey("drawing_sheets.id"), nullable=False, index=True
    )
    drawing_revision_id: Mapped[str] = mapped_column(
        String, ForeignKey("drawing_revisions.id"), nullable=False
    )
    file_id: Mapped[str] = mapped_column(String, nullable=True)
    page_index: Mapped[int] = mapped_column(Integer, nullable=True)
    extracted_metadata: Mapped[dict] = mapped_column(JSON, nullable=True, default=dict)
    # temp_png_path, source_hash, page_index, detection{method, confidence, source_line}

    # Filled by the tiling job. NULL manifest means tiles are still pending.
    tile_manifest: Mapped[dict] = mapped_column(JSON(none_as_null=True), nullable=True)
    tile_base_url: Mapped[str] = mapped_column(Text, nullable=True)
    tiles_base_path: Mapped[str] = mapped_column(Text, nullable=True)
    tile_levels: Mapped[int] = mapped_column(Integer, nullable=True)
    tiles_generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    source_hash: Mapped[str] = mapped_column(String, nullable=True)
    thumbnail_url: Mapped[str] = mapped_column(Text, nullable=True)
    image_width: Mapped[int] = mapped_column(Integer, nullable=True)
    image_height: Mapped[int] = mapped_column(Integer, nullable=True)
