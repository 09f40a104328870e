"""
process_drawing_set: turn an uploaded PDF into sheets, versions and tile jobs.

Flow:
1. Load the drawing set + source file, download the PDF into a scratch dir
2. Page count (fatal) and per-page text layer (best effort)
3. One "Initial" revision for this run
4. Content hash → deterministic artifact prefix "{org_id}/{hash}"
5. Rasterize + upload every page to "{prefix}/temp/page-{i}.png" (best effort per page)
6. Detect sheet identity, insert sheet + version rows
7. Enqueue one generate_drawing_tiles job per version, update the set
8. Refresh the downstream read model (best effort)
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import refresh_read_model
from ..core.errors import RecordNotFoundError
from ..core.storage import TEMP_CACHE, pdfs_key, tiles_key
from ..models.base import utcnow
from ..models.drawing import (
    DrawingRevision, DrawingSet, DrawingSetStatus, DrawingSheet, DrawingSheetVersion,
)
from ..models.file import File
from ..services.pdf_tools import scratch_dir
from ..services.sheet_detection import SheetDetection, SheetNumberRegistry, detect_sheet_metadata
from .context import IngestionReport, JobContext
from .payloads import (
    GenerateDrawingTilesPayload, JobType, ProcessDrawingSetPayload, SheetVersionMetadata,
)
from .queue import ClaimedJob, enqueue_job

logger = logging.getLogger(__name__)

HASH_LENGTH = 16
INITIAL_REVISION = "Initial"


def content_hash(data: bytes) -> str:
    """Short sha256 of the source bytes. Same bytes, same artifact prefix."""
    return hashlib.sha256(data).hexdigest()[:HASH_LENGTH]


def temp_raster_path(base_path: str, page_index: int) -> str:
    return f"{base_path}/temp/page-{page_index}.png"


async def process_drawing_set(
    ctx: JobContext,
    job: ClaimedJob,
    payload: ProcessDrawingSetPayload,
) -> IngestionReport:
    set_id = payload.drawing_set_id
    report = IngestionReport(drawing_set_id=set_id)
    logger.info("Processing drawing set %s", set_id)

    async with ctx.session_factory() as db:
        drawing_set = await db.get(DrawingSet, set_id)
        if drawing_set is None:
            raise RecordNotFoundError(f"Drawing set not found: {set_id}")
        source_file = await db.get(File, payload.source_file_id)
        if source_file is None:
            raise RecordNotFoundError(f"File record not found: {payload.source_file_id}")

        # Plain values only from here on; a rollback expires ORM instances
        org_id = drawing_set.org_id
        set_title = drawing_set.title
        storage_path = payload.storage_path or source_file.storage_path

        pdf_bytes = await ctx.store.get(pdfs_key(storage_path))
        logger.info("Downloaded PDF for set %s: %d bytes", set_id, len(pdf_bytes))

        source_hash = content_hash(pdf_bytes)
        base_path = f"{org_id}/{source_hash}"
        report.base_path = base_path

        with scratch_dir(f"drawing-set-{set_id}-") as workdir:
            pdf_path = workdir / "source.pdf"
            pdf_path.write_bytes(pdf_bytes)

            page_count = await ctx.pdf_tools.page_count(pdf_path)
            report.page_count = page_count
            logger.info("Drawing set %s has %d pages", set_id, page_count)

            texts = await _extract_texts(ctx, pdf_path, page_count, report)

            revision = DrawingRevision(
                org_id=org_id,
                project_id=payload.project_id,
                drawing_set_id=set_id,
                revision_label=INITIAL_REVISION,
                issued_date=utcnow(),
                notes="Initial upload",
            )
            db.add(revision)
            await db.commit()
            revision_id = revision.id

            temp_paths = await _rasterize_pages(ctx, pdf_path, workdir, base_path, page_count, report)

        existing = await db.execute(
            select(DrawingSheet.sheet_number).where(DrawingSheet.drawing_set_id == set_id)
        )
        registry = SheetNumberRegistry.seeded(existing.scalars().all())

        version_ids = []
        for page_index in range(page_count):
            detection = detect_sheet_metadata(texts[page_index], set_title, page_index + 1)
            metadata = SheetVersionMetadata(
                temp_png_path=temp_paths.get(page_index),
                source_hash=source_hash,
                page_index=page_index,
                detection=detection.diagnostics(),
            )
            version_id = await _create_sheet(
                db,
                org_id=org_id,
                project_id=payload.project_id,
                drawing_set_id=set_id,
                revision_id=revision_id,
                file_id=payload.source_file_id,
                page_index=page_index,
                sheet_number=registry.claim(detection.sheet_number, page_index + 1),
                detection=detection,
                metadata=metadata,
                report=report,
            )
            if version_id:
                version_ids.append(version_id)

        for version_id in version_ids:
            await enqueue_job(
                db, org_id, JobType.GENERATE_DRAWING_TILES,
                GenerateDrawingTilesPayload(sheet_version_id=version_id),
            )
        report.tile_jobs_enqueued = len(version_ids)

        await db.execute(
            update(DrawingSet)
            .where(DrawingSet.id == set_id)
            .values(
                status=DrawingSetStatus.PROCESSING.value,  # tiles still pending
                total_pages=page_count,
                processed_pages=0,
                error_message=None,
            )
        )
        await db.commit()
        logger.info("Queued %d tile generation jobs for set %s", len(version_ids), set_id)

        try:
            await refresh_read_model(db)
        except SQLAlchemyError as e:
            await db.rollback()
            report.warn("refresh_read_model", str(e))

    logger.info("Processed drawing set: %s", report.summary())
    return report


async def _extract_texts(
    ctx: JobContext, pdf_path: Path, page_count: int, report: IngestionReport
) -> list[str]:
    """Text layer per page. Any failure means every page is treated as blank."""
    try:
        return await ctx.pdf_tools.page_texts(pdf_path, page_count)
    except Exception as e:
        report.warn("text_extraction", str(e) or e.__class__.__name__)
        return [""] * page_count


async def _rasterize_pages(
    ctx: JobContext,
    pdf_path: Path,
    workdir: Path,
    base_path: str,
    page_count: int,
    report: IngestionReport,
) -> dict[int, str]:
    """
    Render and upload pages one at a time. Returns page index → temp raster
    path for the pages that made it; failed pages are reported and skipped.
    """
    temp_paths: dict[int, str] = {}
    for page_index in range(page_count):
        local_png = workdir / f"page-{page_index}.png"
        storage_path = temp_raster_path(base_path, page_index)
        try:
            await ctx.pdf_tools.rasterize_page(pdf_path, page_index, local_png)
            await ctx.store.put(
                tiles_key(storage_path),
                local_png.read_bytes(),
                content_type="image/png",
                cache_control=TEMP_CACHE,
            )
        except Exception as e:
            report.warn("rasterize", str(e) or e.__class__.__name__, page_index)
            continue
        finally:
            local_png.unlink(missing_ok=True)

        temp_paths[page_index] = storage_path
        report.pages_rasterized += 1
        logger.debug("Uploaded page %d/%d", page_index + 1, page_count)

    logger.info("Rasterized %d/%d pages", len(temp_paths), page_count)
    return temp_paths


async def _create_sheet(
    db: AsyncSession,
    *,
    org_id: str,
    project_id: str,
    drawing_set_id: str,
    revision_id: str,
    file_id: str,
    page_index: int,
    sheet_number: str,
    detection: SheetDetection,
    metadata: SheetVersionMetadata,
    report: IngestionReport,
) -> Optional[str]:
    """Insert one sheet and its version. Returns the version id, None on failure."""
    try:
        sheet = DrawingSheet(
            org_id=org_id,
            project_id=project_id,
            drawing_set_id=drawing_set_id,
            sheet_number=sheet_number,
            sheet_title=detection.sheet_title,
            discipline=detection.discipline,
            sort_order=page_index,
            share_with_clients=False,
            share_with_subs=False,
        )
        db.add(sheet)
        await db.flush()

        version = DrawingSheetVersion(
            org_id=org_id,
            drawing_sheet_id=sheet.id,
            drawing_revision_id=revision_id,
            file_id=file_id,
            page_index=page_index,
            extracted_metadata=metadata.model_dump(mode="json", exclude_none=True),
        )
        db.add(version)
        await db.flush()

        sheet.current_revision_id = revision_id
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        report.warn("create_sheet", str(e), page_index)
        return None

    report.sheets_created += 1
    logger.debug(
        "Page %d → sheet %s (%s, %s)",
        page_index, sheet_number, detection.method.value, detection.confidence.value,
    )
    return version.id
