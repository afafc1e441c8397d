"""Health check API endpoints."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from token_manager.storage import get_db

router = APIRouter(prefix="/api/health", tags=["health"])


@router.get("")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Database connectivity and background operation backlog."""
    db_status = "unknown"
    db_ok = False
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
        db_ok = True
    except Exception as e:
        db_status = f"error: {str(e)}"

    orchestrator = getattr(request.app.state, "orchestrator", None)
    payload = {
        "status": "healthy" if db_ok else "degraded",
        "service": "token-manager",
        "database": db_status,
        "broker": orchestrator.dispatcher.broker.base_url if orchestrator else None,
        "pending_operations": orchestrator.pending if orchestrator else 0,
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=payload)
