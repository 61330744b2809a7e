"""
Domain Services
"""
from app.domain.services.assignment_service import AssignmentService
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.earnings_service import EarningsService
from app.domain.services.feedback_service import FeedbackService
from app.domain.services.outbox_service import OutboxService
from app.domain.services.payment_service import PaymentService
from app.domain.services.settlement_service import SettlementService
from app.domain.services.shift_service import ShiftService
from app.domain.services.tracking_service import TrackingService
from app.domain.services.wallet_service import WalletService

__all__ = [
    "AssignmentService",
    "DeliveryService",
    "EarningsService",
    "FeedbackService",
    "OutboxService",
    "PaymentService",
    "SettlementService",
    "ShiftService",
    "TrackingService",
    "WalletService",
]
