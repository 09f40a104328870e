"""
generate_drawing_tiles: one page raster in, one deep-zoom pyramid out.

Artifacts land under "{org_id}/{source_hash}/page-{i}/":
    tiles/{level}/{col}_{row}.png, thumbnail.png, manifest.json

Safe to re-run: a version that already has a manifest and base URL is left alone,
and a page whose pyramid already exists in the store is linked, not rebuilt.
"""

import asyncio
import json
import logging
import re
from typing import Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import refresh_read_model
from ..core.errors import JobPayloadError, ObjectNotFoundError, StaleJobError
from ..core.storage import IMMUTABLE_CACHE, tiles_base_url, tiles_key
from ..models.base import utcnow
from ..models.drawing import DrawingSet, DrawingSetStatus, DrawingSheet, DrawingSheetVersion
from ..services.pyramid import (
    Tile, build_manifest, load_raster, pyramid_geometry, render_level_tiles,
    render_thumbnail, tile_path,
)
from .context import JobContext, TilingReport
from .payloads import GenerateDrawingTilesPayload, SheetVersionMetadata
from .queue import ClaimedJob

logger = logging.getLogger(__name__)

PAGE_PATH_RE = re.compile(r"page-(\d+)\.png$")


def page_index_from_path(path: str) -> Optional[int]:
    match = PAGE_PATH_RE.search(path)
    return int(match.group(1)) if match else None


async def generate_drawing_tiles(
    ctx: JobContext,
    job: ClaimedJob,
    payload: GenerateDrawingTilesPayload,
) -> TilingReport:
    version_id = payload.sheet_version_id
    report = TilingReport(sheet_version_id=version_id)

    # Short read; no transaction stays open while rendering
    async with ctx.session_factory() as db:
        version = await db.get(DrawingSheetVersion, version_id)
        if version is None:
            raise StaleJobError(f"Sheet version {version_id} no longer exists")

        if version.tile_manifest and version.tile_base_url:
            logger.info("Tiles already exist for version %s, skipping generation", version_id)
            report.skipped = True
            return report

        metadata = SheetVersionMetadata.model_validate(version.extracted_metadata or {})
        temp_png_path = metadata.temp_png_path
        if not temp_png_path:
            raise JobPayloadError(
                f"Sheet version {version_id} has no temp raster path; was PDF extraction completed?"
            )

        page_index = version.page_index
        if page_index is None:
            page_index = metadata.page_index
        if page_index is None:
            page_index = page_index_from_path(temp_png_path)
        if page_index is None:
            raise JobPayloadError(
                f"Sheet version {version_id} has no page index and none could be inferred"
            )

        org_id = version.org_id
        source_hash = metadata.source_hash or version.source_hash

    base_path = f"{org_id}/{source_hash}/page-{page_index}"

    # Identical source bytes share a pyramid; a finished one is never rebuilt
    manifest = await _load_manifest(ctx, base_path)
    if manifest is None:
        logger.info("Generating tiles for version %s (page %d)", version_id, page_index)
        try:
            manifest = await _build_pyramid(ctx, temp_png_path, base_path, report)
        except ObjectNotFoundError:
            # A job for the same bytes may have finished and removed the raster meanwhile
            manifest = await _load_manifest(ctx, base_path)
            if manifest is None:
                raise
            _reuse(manifest, report)
    else:
        _reuse(manifest, report)
    if report.reused:
        logger.info("Reusing existing pyramid at %s for version %s", base_path, version_id)

    base_url = tiles_base_url(ctx.store, ctx.settings, base_path)
    async with ctx.session_factory() as db:
        version = await db.get(DrawingSheetVersion, version_id)
        if version is None:
            raise StaleJobError(f"Sheet version {version_id} was deleted during tiling")

        version.tile_manifest = manifest
        version.tile_base_url = base_url
        version.tiles_base_path = base_path
        version.tile_levels = manifest["Levels"]
        version.tiles_generated_at = utcnow()
        version.thumbnail_url = f"{base_url}/thumbnail.png"
        version.image_width = report.width
        version.image_height = report.height
        version.source_hash = source_hash
        version.page_index = page_index
        await db.commit()
        logger.info("Generated tiles: %s", report.summary())

        try:
            await ctx.store.delete_many([tiles_key(temp_png_path)])
        except Exception as e:
            report.warn("delete_temp_raster", str(e) or e.__class__.__name__, page_index)

        report.sets_ready = await _complete_ready_sets(ctx, db, org_id, report)

    return report


async def _load_manifest(ctx: JobContext, base_path: str) -> Optional[dict]:
    """Manifest of a finished pyramid, or None. Written last, so its presence means complete."""
    try:
        data = await ctx.store.get(tiles_key(f"{base_path}/manifest.json"))
    except ObjectNotFoundError:
        return None
    return json.loads(data)


def _reuse(manifest: dict, report: TilingReport) -> None:
    size = manifest["Image"]["Size"]
    report.reused = True
    report.levels = manifest["Levels"]
    report.width, report.height = size["Width"], size["Height"]


async def _build_pyramid(
    ctx: JobContext, temp_png_path: str, base_path: str, report: TilingReport
) -> dict:
    raster = await ctx.store.get(tiles_key(temp_png_path))
    source = await asyncio.to_thread(load_raster, raster)
    width, height = source.size
    report.width, report.height = width, height

    # One resized level in memory at a time
    for geometry in pyramid_geometry(width, height):
        tiles = await asyncio.to_thread(render_level_tiles, source, geometry)
        await _upload_tiles(ctx, base_path, tiles, report)
        report.levels += 1
        report.tile_count += len(tiles)
        logger.debug(
            "Level %d: %dx%d, %d tiles", geometry.level, geometry.width, geometry.height, len(tiles)
        )

    thumbnail = await asyncio.to_thread(render_thumbnail, source)
    await _put(ctx, f"{base_path}/thumbnail.png", thumbnail, "image/png", report)

    manifest = build_manifest(width, height)
    await _put(
        ctx, f"{base_path}/manifest.json", json.dumps(manifest).encode("utf-8"),
        "application/json", report,
    )
    return manifest


async def _put(ctx: JobContext, path: str, data: bytes, content_type: str, report: TilingReport) -> None:
    await ctx.store.put(tiles_key(path), data, content_type=content_type, cache_control=IMMUTABLE_CACHE)
    report.uploads += 1


async def _upload_tiles(ctx: JobContext, base_path: str, tiles: list[Tile], report: TilingReport) -> None:
    """Upload one level's tiles, at most tile_upload_concurrency in flight."""
    chunk_size = max(1, ctx.settings.tile_upload_concurrency)
    for start in range(0, len(tiles), chunk_size):
        chunk = tiles[start:start + chunk_size]
        await asyncio.gather(*(
            _put(ctx, tile_path(base_path, t.level, t.column, t.row), t.data, "image/png", report)
            for t in chunk
        ))


async def _complete_ready_sets(
    ctx: JobContext, db: AsyncSession, org_id: str, report: TilingReport
) -> list[str]:
    """
    Flip every processing set in the org whose sheets all have a tiled version
    to ready. Re-evaluated from scratch on each call, so completion order and
    duplicate runs do not matter. Failures are reported, never raised.
    """
    ready: list[str] = []
    try:
        result = await db.execute(
            select(DrawingSet).where(
                DrawingSet.org_id == org_id,
                DrawingSet.status == DrawingSetStatus.PROCESSING.value,
            )
        )
        for drawing_set in result.scalars().all():
            total = await db.scalar(
                select(func.count(DrawingSheet.id)).where(DrawingSheet.drawing_set_id == drawing_set.id)
            )
            tiled = await db.scalar(
                select(func.count(distinct(DrawingSheet.id)))
                .select_from(DrawingSheet)
                .join(DrawingSheetVersion, DrawingSheetVersion.drawing_sheet_id == DrawingSheet.id)
                .where(
                    DrawingSheet.drawing_set_id == drawing_set.id,
                    DrawingSheetVersion.tile_manifest.is_not(None),
                )
            )
            if not total or tiled != total:
                continue

            drawing_set.status = DrawingSetStatus.READY.value
            drawing_set.processed_pages = total
            drawing_set.processed_at = utcnow()
            ready.append(drawing_set.id)
            logger.info("Drawing set %s is ready (%d/%d sheets)", drawing_set.id, tiled, total)

        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        report.warn("cascade_check", str(e))
        return []

    for set_id in ready:
        delivered = await ctx.notifier.notify_org(
            org_id, "drawing_set.ready", {"drawing_set_id": set_id}
        )
        if ctx.notifier.enabled and not delivered:
            report.warn("notify", f"drawing_set.ready not delivered for {set_id}")

    try:
        await refresh_read_model(db)
    except SQLAlchemyError as e:
        await db.rollback()
        report.warn("refresh_read_model", str(e))

    return ready
