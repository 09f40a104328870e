"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter, Depends

from .dependencies import require_cron_secret
from .jobs import jobs_router

router = APIRouter()


# ── Health (no auth) ─────────────────────────────────────────────────

@router.get("/health")
async def health():
    return {"status": "ok", "service": "drawings-worker"}


# ── V1 routes (cron secret required) ────────────────────────────────

router.include_router(jobs_router, prefix="/v1", dependencies=[Depends(require_cron_secret)])
