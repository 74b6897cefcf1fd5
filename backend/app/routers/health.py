from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.logger_config import custom_logger
from backend.app.core.redis_client import ping_redis
from backend.app.db.session import get_session


router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, bool]:
    """Basic liveness probe."""
    return {"ok": True}


@router.get("/readiness")
async def readiness(session: AsyncSession = Depends(get_session)) -> dict[str, bool]:
    """Ensure the database and Redis are reachable."""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        custom_logger.error(f"Database not ready: {exc}")
        raise HTTPException(status_code=503, detail="Database unavailable") from exc

    try:
        ready = await ping_redis()
    except Exception as exc:
        custom_logger.error(f"Redis not ready: {exc}")
        raise HTTPException(status_code=503, detail="Redis unavailable") from exc
    if not ready:
        raise HTTPException(status_code=503, detail="Redis unavailable")

    return {"ready": True}
