"""
FastAPI dependency for delivery-worker requests

Usage:
    @router.get("/orders/new")
    async def new_orders(
        worker_id: int = Depends(get_current_worker_id),
        db: AsyncSession = Depends(get_db),
    ):
        ...
"""
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from app.core.auth import verify_token, DELIVERY_WORKER_ROLE
from app.core.logging import get_logger

logger = get_logger(__name__)

security = HTTPBearer(auto_error=False)


def worker_id_from_token(token: Optional[str]) -> Optional[int]:
    """Worker id carried by a valid rider token, else None"""
    if not token:
        return None
    token_data = verify_token(token)
    if not token_data:
        return None
    if token_data.role != DELIVERY_WORKER_ROLE:
        logger.warning(
            "Rider endpoint access denied; wrong role in token",
            extra_data={"worker_id": token_data.worker_id, "role": token_data.role},
        )
        return None
    return token_data.worker_id


async def get_current_worker_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> int:
    """
    Authenticate the bearer JWT and return the worker id it carries.

    Raises 401 when the header is missing or the token is invalid or expired.
    """
    worker_id = worker_id_from_token(credentials.credentials if credentials else None)
    if worker_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return worker_id
