"""Liveness and readiness checks."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from farmchain.config import settings
from farmchain.database import engine, utcnow
from farmchain.utils.cache import get_redis

router = APIRouter(tags=["health"])


async def _check_database() -> str:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    return "ok"


async def _check_redis() -> str:
    if not settings.cache_enabled:
        return "disabled"
    client = await get_redis()
    await client.ping()
    return "ok"


@router.get("/health")
async def health_check():
    """Liveness only, no DB or Redis round trip."""
    return {
        "status": "ok",
        "service": "farmchain",
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
    }


@router.get("/health/ready")
async def readiness_check():
    """200 only when the database (and Redis, if caching is on) answer."""
    checks = {}
    ready = True
    for name, check in (("database", _check_database), ("redis", _check_redis)):
        try:
            checks[name] = await check()
        except Exception as e:
            checks[name] = f"error: {str(e)[:100]}"
            ready = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
