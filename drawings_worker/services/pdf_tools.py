"""
PDF utilities invoked as subprocesses.
- mutool info   → page count (fatal on failure)
- pdftotext     → per-page text layer (best effort; pdfplumber when flagged)
- mutool draw   → single page PNG raster at a fixed DPI
"""

import asyncio
import logging
import re
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..core.config import Settings
from ..core.errors import PdfToolError

logger = logging.getLogger(__name__)

PAGES_RE = re.compile(r"Pages:\s*(\d+)", re.IGNORECASE)
FORM_FEED = "\f"


@contextmanager
def scratch_dir(prefix: str) -> Iterator[Path]:
    """Temporary working directory, removed on every exit path."""
    path = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning("Failed to clean up scratch dir %s: %s", path, e)


def parse_page_count(output: str) -> int:
    match = PAGES_RE.search(output)
    if not match:
        raise PdfToolError("Could not parse page count from mutool output")
    count = int(match.group(1))
    if count <= 0:
        raise PdfToolError(f"Invalid page count: {count}")
    return count


def split_pages(output: str, page_count: int) -> list[str]:
    """Split pdftotext output on form feeds, padded or trimmed to page_count."""
    pages = output.split(FORM_FEED)
    if len(pages) > page_count:
        # pdftotext terminates the last page with a form feed too
        pages = pages[:page_count]
    pages.extend([""] * (page_count - len(pages)))
    return pages


class PdfToolkit:
    """Thin async wrapper around the mutool / pdftotext command line tools."""

    def __init__(self, settings: Settings, text_extractor: str = "pdftotext"):
        self.settings = settings
        self.text_extractor = text_extractor

    async def _run(self, cmd: list[str], timeout: float) -> str:
        logger.debug("Running: %s", " ".join(cmd))
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise PdfToolError(f"{cmd[0]} could not be started: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise PdfToolError(f"{cmd[0]} timed out after {timeout:.0f}s")

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise PdfToolError(f"{cmd[0]} exited with {process.returncode}: {message[:500]}")

        return stdout.decode("utf-8", errors="replace")

    async def page_count(self, pdf_path: Path) -> int:
        output = await self._run(
            [self.settings.mutool_bin, "info", str(pdf_path)],
            timeout=self.settings.page_count_timeout,
        )
        return parse_page_count(output)

    async def page_texts(self, pdf_path: Path, page_count: int) -> list[str]:
        if self.text_extractor == "pdfplumber":
            pages = await asyncio.to_thread(_pdfplumber_pages, pdf_path)
            return split_pages(FORM_FEED.join(pages), page_count)

        output = await self._run(
            [self.settings.pdftotext_bin, "-layout", "-enc", "UTF-8", str(pdf_path), "-"],
            timeout=self.settings.text_extract_timeout,
        )
        return split_pages(output, page_count)

    async def rasterize_page(
        self, pdf_path: Path, page_index: int, out_path: Path, dpi: Optional[int] = None
    ) -> Path:
        """Render one page (0-based index) to PNG."""
        await self._run(
            [
                self.settings.mutool_bin, "draw",
                "-r", str(dpi or self.settings.raster_dpi),
                "-o", str(out_path),
                str(pdf_path),
                str(page_index + 1),
            ],
            timeout=self.settings.raster_timeout,
        )
        if not out_path.is_file():
            raise PdfToolError(f"mutool produced no output for page {page_index + 1}")
        return out_path


def _pdfplumber_pages(pdf_path: Path) -> list[str]:
    import pdfplumber

    with pdfplumber.open(str(pdf_path)) as pdf:
        return [page.extract_text() or "" for page in pdf.pages]
