"""
Last-Mile Dispatch - FastAPI application

Rider app API under /api, dispatcher console, health checks.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from app.core.config import settings
from app.core.logging import setup_logging, get_logger
from app.core.middleware import setup_middleware, setup_exception_handlers
from app.api.routes import router as api_router
from app.db.database import engine, Base

# Logging first so import-time warnings are structured
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """Parse comma-separated CORS origins string into a clean list."""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Create tables on start; close Redis and the DB pool on stop"""
    logger.info(
        "Starting application",
        extra_data={
            "app_name": settings.APP_NAME,
            "strict_lifecycle": settings.STRICT_LIFECYCLE_ORDER,
            "dispatch_requires_paid_order": settings.DISPATCH_REQUIRES_PAID_ORDER,
        }
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")

    yield

    logger.info("Shutting down application")
    from app.core.redis_client import close_redis
    await close_redis()
    await engine.dispose()
    logger.info("Database connections disposed")


_OPENAPI_TAGS = [
    {"name": "Orders", "description": "New orders, acceptance, skip and the delivery lifecycle."},
    {"name": "Dispatch", "description": "Dispatcher console: assign orders, worker status history."},
    {"name": "Payments", "description": "Order payment summary and rider cash collections."},
    {"name": "Settlements", "description": "Rider cash handover: settlements, confirmation, UPI payable."},
    {"name": "Wallet", "description": "Wallet summary, statement, export and deductions."},
    {"name": "Earnings", "description": "Earnings per period."},
    {"name": "Shifts", "description": "Online/offline and work hours (HTTP and WebSocket)."},
    {"name": "Workers", "description": "Live location updates."},
    {"name": "Feedback", "description": "Customer ratings of completed deliveries."},
    {"name": "Health", "description": "Liveness and readiness checks."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "Backend for a last-mile delivery app: order assignment, delivery lifecycle, "
        "cash collection, settlements, earnings and the rider wallet."
    ),
    openapi_tags=_OPENAPI_TAGS,
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Setup middleware (correlation ID, request logging)
setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

# Safe dev default to support local frontend development without opening CORS in production.
if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Admin-API-Key"],
    )

app.include_router(api_router, prefix="/api")




@app.get(
    "/health",
    summary="Liveness check",
    description=(
        "Cheap check that the process is up and answering. "
        "Dependencies are not checked so a DB or Redis outage does not trigger restarts."
    ),
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness check",
    description="Checks DB, Redis and the Celery broker. 200 when all are ok, 503 otherwise.",
    responses={
        200: {
            "description": "All dependencies ok",
            "content": {
                "application/json": {
                    "example": {"status": "healthy", "db": "ok", "redis": "ok", "celery": "ok"}
                }
            },
        },
        503: {
            "description": "At least one dependency is unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "status": "degraded",
                        "db": "ok",
                        "redis": "error: redis_unavailable",
                        "celery": "ok",
                    }
                }
            },
        },
    },
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    from app.domain.services.health_service import check_readiness

    result = await check_readiness()
    status_code = 200 if result["status"] == "healthy" else 503
    return JSONResponse(content=result, status_code=status_code)
