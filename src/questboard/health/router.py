"""Liveness, readiness and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from questboard.config import get_settings
from questboard.dependencies import get_db, get_engine
from questboard.engine import GamificationEngine
from questboard.redis_client import check_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_db),  # noqa: B008
    engine: GamificationEngine = Depends(get_engine),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: database, Redis and scheduler state."""
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    checks["redis"] = await check_redis()

    all_ok = all(v == "ok" for v in checks.values())
    return {
        "status": "ready" if all_ok else "degraded",
        "checks": checks,
        "scheduler": {
            "running": engine.scheduler.running,
            "inflight": engine.scheduler.inflight,
            "jobs": {
                name: {"runs": job.runs, "failures": job.failures, "last_error": job.last_error}
                for name, job in engine.scheduler.jobs.items()
            },
        },
    }


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
