"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.orders import router as orders_router
from app.api.routes.dispatch import router as dispatch_router
from app.api.routes.payments import router as payments_router
from app.api.routes.settlements import router as settlements_router
from app.api.routes.wallets import router as wallets_router
from app.api.routes.earnings import router as earnings_router
from app.api.routes.shifts import router as shifts_router
from app.api.routes.workers import router as workers_router
from app.api.routes.feedback import router as feedback_router

router = APIRouter()

router.include_router(orders_router, prefix="/orders", tags=["Orders"])
router.include_router(dispatch_router, prefix="/dispatch", tags=["Dispatch"])
router.include_router(payments_router, prefix="/payments", tags=["Payments"])
router.include_router(settlements_router, prefix="/settlements", tags=["Settlements"])
router.include_router(wallets_router, prefix="/wallet", tags=["Wallet"])
router.include_router(earnings_router, prefix="/earnings", tags=["Earnings"])
router.include_router(shifts_router, prefix="/shifts", tags=["Shifts"])
router.include_router(workers_router, prefix="/workers", tags=["Workers"])
router.include_router(feedback_router, prefix="/feedback", tags=["Feedback"])
