"""
API key check for dispatcher and internal service endpoints.

Usage:
    @router.post("/orders/{order_id}/assign")
    async def assign(
        _: None = Depends(require_admin_api_key),
    ):
        ...
"""
import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    api_key: str | None = Depends(_api_key_header),
) -> None:
    """
    Validate the X-Admin-API-Key header.

    401 when missing, 403 when wrong. With ADMIN_API_KEY unset the
    endpoints are closed entirely.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("Admin endpoint access denied; ADMIN_API_KEY is not configured")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY is not configured",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key; the X-Admin-API-Key header is required",
        )

    if not hmac.compare_digest(api_key.encode(), settings.ADMIN_API_KEY.encode()):
        logger.warning("Admin endpoint access denied; wrong API key")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )
