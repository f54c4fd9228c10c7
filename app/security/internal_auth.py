"""
Shared-secret authentication for dashboard -> API calls.
"""

import logging
from typing import Optional

from fastapi import Header, HTTPException

from app.core.config import settings
from app.security.slack_signature import constant_time_equals

logger = logging.getLogger(__name__)


async def require_internal_token(
    x_internal_token: Optional[str] = Header(None, alias="X-Internal-Token"),
) -> None:
    """
    FastAPI dependency guarding internal endpoints.

    Raises:
        HTTPException: 503 if INTERNAL_API_TOKEN is unset, 401 on a missing or wrong token
    """
    if not settings.INTERNAL_API_TOKEN:
        logger.error("INTERNAL_API_TOKEN not configured, refusing internal request")
        raise HTTPException(status_code=503, detail="Internal API not configured")

    if not x_internal_token or not constant_time_equals(
        settings.INTERNAL_API_TOKEN, x_internal_token
    ):
        logger.warning("Internal request with invalid X-Internal-Token")
        raise HTTPException(status_code=401, detail="Invalid internal token")
