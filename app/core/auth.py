"""
JWT authentication for delivery workers.

Tokens are issued by the rider login service (OTP flow, out of scope here)
and carry the worker id. This module signs tokens for that service and for
tests, and verifies them on every rider request.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt as pyjwt
from pydantic import BaseModel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

DELIVERY_WORKER_ROLE = "delivery_worker"


class TokenPayload(BaseModel):
    """JWT claims"""
    worker_id: int
    role: str
    exp: int  # Unix timestamp


def create_access_token(worker_id: int, role: str = DELIVERY_WORKER_ROLE) -> str:
    """Sign an access token for a delivery worker"""
    if not settings.JWT_SECRET_KEY:
        raise ValueError("JWT_SECRET_KEY is not configured; cannot sign tokens")
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {
        "worker_id": worker_id,
        "role": role,
        "exp": int(expire.timestamp()),
    }
    encoded = pyjwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    logger.info("JWT token created", extra_data={"worker_id": worker_id, "role": role})
    return encoded


def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify a JWT. Returns None when invalid, expired or malformed."""
    if not settings.JWT_SECRET_KEY:
        logger.error("JWT_SECRET_KEY is empty; tokens cannot be verified")
        return None
    try:
        payload = pyjwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except pyjwt.InvalidTokenError:
        logger.warning("JWT token invalid or expired")
        return None
    except (KeyError, ValueError) as e:
        logger.warning("JWT payload malformed", extra_data={"error": str(e)})
        return None
