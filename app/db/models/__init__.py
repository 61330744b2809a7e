"""
Database Models
"""
from app.db.models.store import Store
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.order import Order
from app.db.models.payment import Payment
from app.db.models.settlement import Settlement
from app.db.models.wallet_transaction import WalletTransaction
from app.db.models.deduction import Deduction
from app.db.models.work_log import WorkLog
from app.db.models.delivery_feedback import DeliveryFeedback
from app.db.models.outbox_message import OutboxMessage

__all__ = [
    "Store",
    "DeliveryWorker",
    "Order",
    "Payment",
    "Settlement",
    "WalletTransaction",
    "Deduction",
    "WorkLog",
    "DeliveryFeedback",
    "OutboxMessage",
]
