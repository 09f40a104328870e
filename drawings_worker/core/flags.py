"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the worker uses a local fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────────
    use_s3: bool = Field(default=True, alias="FF_USE_S3")
    # ON  → Objects go to S3 / R2. Needs AWS creds + S3_BUCKET_NAME.
    # OFF → Objects saved under LOCAL_STORAGE_PATH.

    # ── Realtime ─────────────────────────────────────────────────────
    use_redis: bool = Field(default=True, alias="FF_USE_REDIS")
    # ON  → "drawing_set.ready" published on Redis. Needs REDIS_URL.
    # OFF → Notifications silently skipped. Nothing breaks.

    # ── Text layer ───────────────────────────────────────────────────
    text_extractor: str = Field(default="pdftotext", alias="FF_TEXT_EXTRACTOR")
    # "pdftotext"  → poppler subprocess, pages split on form feed.
    # "pdfplumber" → in-process extraction, no external binary needed.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
