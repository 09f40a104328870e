"""
Shared fixtures: file-backed SQLite, a local object store under tmp_path and a
PdfToolkit stand-in that draws pages with Pillow instead of calling mutool.
"""

import os

os.environ.setdefault("FF_USE_S3", "false")
os.environ.setdefault("FF_USE_REDIS", "false")

from pathlib import Path
from typing import Optional

import pytest
from PIL import Image
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from drawings_worker.core.config import Settings
from drawings_worker.core.database import build_session_factory, create_tables
from drawings_worker.core.errors import PdfToolError
from drawings_worker.core.redis import Notifier
from drawings_worker.core.storage import LocalObjectStore, pdfs_key
from drawings_worker.jobs.context import JobContext
from drawings_worker.models.drawing import DrawingSet
from drawings_worker.models.file import File
from drawings_worker.services.pdf_tools import PdfToolkit

ORG_ID = "org-1"
PROJECT_ID = "project-1"
PAGE_SIZE = (600, 400)


class FakePdfToolkit(PdfToolkit):
    """Serves a fixed page count and text layer; rasterizes blank PNGs."""

    def __init__(
        self,
        settings: Settings,
        pages: int = 3,
        texts: Optional[list[str]] = None,
        fail_pages: tuple = (),
        text_error: Optional[str] = None,
        size: tuple[int, int] = PAGE_SIZE,
    ):
        super().__init__(settings)
        self.pages = pages
        self.texts = texts
        self.fail_pages = set(fail_pages)
        self.text_error = text_error
        self.size = size
        self.rasterized: list[int] = []

    async def page_count(self, pdf_path: Path) -> int:
        assert pdf_path.is_file()
        return self.pages

    async def page_texts(self, pdf_path: Path, page_count: int) -> list[str]:
        if self.text_error:
            raise PdfToolError(self.text_error)
        texts = list(self.texts or [])
        return (texts + [""] * page_count)[:page_count]

    async def rasterize_page(self, pdf_path: Path, page_index: int, out_path: Path, dpi=None) -> Path:
        if page_index in self.fail_pages:
            raise PdfToolError(f"mutool exited with 1: cannot render page {page_index + 1}")
        Image.new("RGB", self.size, "white").save(out_path, format="PNG")
        self.rasterized.append(page_index)
        return out_path


class RecordingStore(LocalObjectStore):
    """LocalObjectStore that remembers every write and delete."""

    def __init__(self, base_path: str):
        super().__init__(base_path)
        self.puts: list[tuple[str, str, Optional[str]]] = []
        self.deletes: list[str] = []

    async def put(self, key, data, content_type="application/octet-stream", cache_control=None):
        self.puts.append((key, content_type, cache_control))
        await super().put(key, data, content_type, cache_control)

    async def delete_many(self, keys):
        keys = list(keys)
        self.deletes.extend(keys)
        await super().delete_many(keys)


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__("redis://unused", enabled=True)
        self.events: list[tuple[str, str, dict]] = []

    async def publish(self, channel, event_type, data=None) -> bool:
        self.events.append((channel, event_type, data))
        return True


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'drawings.db'}",
        LOCAL_STORAGE_PATH=str(tmp_path / "storage"),
        DRAWINGS_TILES_BASE_URL="https://tiles.example.com",
        CRON_SECRET="",
    )


@pytest.fixture
async def engine(settings):
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(settings) -> RecordingStore:
    return RecordingStore(settings.local_storage_path)


@pytest.fixture
def pdf_tools(settings) -> FakePdfToolkit:
    return FakePdfToolkit(settings)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def ctx(settings, session_factory, store, pdf_tools, notifier) -> JobContext:
    return JobContext(
        settings=settings,
        session_factory=session_factory,
        store=store,
        pdf_tools=pdf_tools,
        notifier=notifier,
    )


@pytest.fixture
def make_drawing_set(session_factory, store):
    """Insert a file + drawing set and upload fake PDF bytes. Returns (set_id, file_id)."""

    async def _make(
        title: str = "Permit Set",
        org_id: str = ORG_ID,
        storage_path: str = f"{ORG_ID}/{PROJECT_ID}/plans.pdf",
        pdf_bytes: bytes = b"%PDF-1.7 fake drawing set",
    ) -> tuple[str, str]:
        await store.put(pdfs_key(storage_path), pdf_bytes, content_type="application/pdf")
        async with session_factory() as db:
            source = File(
                org_id=org_id,
                project_id=PROJECT_ID,
                file_name="plans.pdf",
                storage_path=storage_path,
                size_bytes=len(pdf_bytes),
            )
            drawing_set = DrawingSet(org_id=org_id, project_id=PROJECT_ID, title=title)
            db.add_all([source, drawing_set])
            await db.flush()
            drawing_set.source_file_id = source.id
            await db.commit()
            return drawing_set.id, source.id

    return _make
