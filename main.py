"""
Drawings worker: PDF ingestion and deep-zoom tiling.
Entry point. Run with: python main.py [worker|api]
"""

import argparse
import asyncio
import logging
import signal

import uvicorn

from drawings_worker.core.config import get_settings
from drawings_worker.core.database import close_db, init_db
from drawings_worker.factory import build_context, configure_logging, create_app, create_worker

logger = logging.getLogger(__name__)

app = create_app()


async def run_worker() -> None:
    settings = get_settings()
    await init_db()
    ctx = build_context(settings)
    worker = create_worker(ctx)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.start()
    finally:
        await ctx.notifier.close()
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Drawings ingestion and tiling worker")
    parser.add_argument("mode", nargs="?", choices=["worker", "api"], default="worker")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings)

    if args.mode == "api":
        uvicorn.run(
            "main:app",
            host=settings.api_host,
            port=settings.api_port,
            reload=settings.env == "development",
            log_level=settings.log_level.lower(),
        )
    else:
        logger.info("Starting drawings worker (env=%s)", settings.env)
        asyncio.run(run_worker())


if __name__ == "__main__":
    main()
