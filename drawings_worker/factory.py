"""
Wiring. Builds the job context, the worker and the FastAPI app from settings + flags.
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, get_settings
from .core.database import close_db, get_session_factory, init_db
from .core.flags import FeatureFlags, get_flags
from .core.redis import Notifier
from .core.storage import get_object_store
from .jobs.context import JobContext
from .jobs.queue import RetryPolicy
from .jobs.registry import JobRegistry, default_registry
from .services.pdf_tools import PdfToolkit
from .worker import Worker

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def build_context(
    settings: Optional[Settings] = None,
    flags: Optional[FeatureFlags] = None,
) -> JobContext:
    settings = settings or get_settings()
    flags = flags or get_flags()

    logger.info(
        "Flags: s3=%s redis=%s text_extractor=%s",
        flags.use_s3, flags.use_redis, flags.text_extractor,
    )
    return JobContext(
        settings=settings,
        session_factory=get_session_factory(),
        store=get_object_store(settings, flags),
        pdf_tools=PdfToolkit(settings, text_extractor=flags.text_extractor),
        notifier=Notifier(settings.redis_url, enabled=flags.use_redis),
    )


def create_worker(ctx: JobContext, registry: Optional[JobRegistry] = None) -> Worker:
    settings = ctx.settings
    return Worker(
        ctx,
        registry or default_registry(),
        batch_size=settings.worker_batch_size,
        poll_interval=settings.worker_poll_interval,
        policy=RetryPolicy(
            max_attempts=settings.job_max_attempts,
            backoff_base=settings.job_backoff_base,
            backoff_unit=timedelta(seconds=settings.job_backoff_unit_seconds),
        ),
        claim_timeout=timedelta(minutes=settings.job_claim_timeout_minutes),
    )


def create_app(ctx: Optional[JobContext] = None) -> FastAPI:
    settings = ctx.settings if ctx else get_settings()

    app = FastAPI(
        title="Drawings Worker",
        description="Drawing set ingestion and deep-zoom tiling",
        version="1.0.0",
        docs_url="/docs" if settings.env == "development" else None,
        redoc_url=None,
    )
    app.state.context = ctx

    # ── Startup ──────────────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup():
        configure_logging(settings)
        logger.info("Starting drawings API (env=%s)", settings.env)
        if app.state.context is None:
            await init_db()
            app.state.context = build_context(settings)

    # ── Shutdown ─────────────────────────────────────────────────
    @app.on_event("shutdown")
    async def on_shutdown():
        if ctx is None and app.state.context is not None:
            await app.state.context.notifier.close()
            await close_db()
        logger.info("Drawings API shut down")

    # ── Routes ───────────────────────────────────────────────────
    from .api.router import router
    app.include_router(router)

    return app
