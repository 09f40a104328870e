"""
FastAPI dependencies. Injected into route handlers.
"""

import secrets

from fastapi import Depends, Header, HTTPException, Request, status

from ..jobs.context import JobContext


def get_context(request: Request) -> JobContext:
    """The job context the app was built with (or built on startup)."""
    ctx = request.app.state.context
    if ctx is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Worker context not initialized",
        )
    return ctx


async def require_cron_secret(
    authorization: str = Header(default=""),
    ctx: JobContext = Depends(get_context),
) -> None:
    """
    Require "Authorization: Bearer <CRON_SECRET>".
    No-op when no secret is configured (local dev).
    """
    expected = ctx.settings.cron_secret
    if not expected:
        return

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(token.strip(), expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
