"""Health check endpoint."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(request: Request):
    """Health check endpoint."""
    logger.debug(
        f"[HEALTH] Health check requested - Client: {request.client.host if request.client else 'unknown'}"
    )
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_calls": len(request.app.state.registry.active_sessions()),
        "knowledge_bases": len(request.app.state.knowledge_index),
    }
