"""API key protection for management endpoints."""
import logging
import secrets
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request

from callagent.core.config import Settings
from callagent.core.dependencies import get_settings

logger = logging.getLogger(__name__)


def verify_api_key(provided: Optional[str], expected: Optional[str]) -> bool:
    """Check a presented key against the configured one."""
    if not expected:
        return True
    if not provided:
        return False
    return secrets.compare_digest(provided.encode(), expected.encode())


async def require_api_key(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> bool:
    """Dependency to require the management API key (when one is configured)."""
    if not verify_api_key(x_api_key, settings.api_key):
        logger.warning(
            f"[AUTH] Rejected request - Path: {request.url.path}, "
            f"Client: {request.client.host if request.client else 'unknown'}"
        )
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return True
