import hmac
import logging

from fastapi import Header, HTTPException, status
from mailbridge.utils.config import settings

logger = logging.getLogger(__name__)

async def require_bearer(authorization: str = Header(None)):
    """
    Static bearer token validation for the tool endpoints.
    Uses the configured API_TOKEN from .env.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token"
        )

    token = authorization.split(" ", 1)[1].strip()

    if not settings.API_TOKEN or settings.API_TOKEN == "changeme":
        logger.error("API_TOKEN is not configured; rejecting tool call")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfigured: API_TOKEN not set"
        )

    if not hmac.compare_digest(token, settings.API_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid token"
        )

    return {"user_id": "admin", "auth_method": "static"}
