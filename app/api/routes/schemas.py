"""
Shared schemas - models reused by several route modules
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, computed_field

from app.db.models.order import OrderStatus, OrderPaymentStatus, OrderPaymentMethod
from app.db.models.payment import PaymentStatus, PaymentMethod
from app.db.models.settlement import SettlementStatus, SettlementMethod
from app.state_machine.lifecycle import derive_order_stage, next_action as stage_next_action
from app.state_machine.states import OrderStage


class OrderResponse(BaseModel):
    """Order as shown in the rider app"""
    id: int
    order_number: str
    status: OrderStatus
    payment_status: OrderPaymentStatus
    payment_method: OrderPaymentMethod
    store_id: Optional[int] = None
    assigned_worker_id: Optional[int] = None

    total_amount: float
    discount_amount: float
    shipping_fee: float
    grand_total: float

    pickup_address: Optional[str] = None
    pickup_lat: Optional[float] = None
    pickup_lng: Optional[float] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    drop_address: Optional[str] = None
    drop_lat: Optional[float] = None
    drop_lng: Optional[float] = None
    delivery_notes: Optional[str] = None

    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    navigation_started_at: Optional[datetime] = None
    reached_at: Optional[datetime] = None
    delivered_time: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def stage(self) -> OrderStage:
        return derive_order_stage(self)

    @computed_field
    @property
    def next_action(self) -> Optional[str]:
        return stage_next_action(self.stage)


class PaymentResponse(BaseModel):
    id: int
    order_id: int
    amount: float
    payment_method: PaymentMethod
    status: PaymentStatus
    collected_by: Optional[int] = None
    collected_at: Optional[datetime] = None
    settlement_id: Optional[int] = None
    settled_at: Optional[datetime] = None
    transaction_ref: Optional[str] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    id: int
    worker_id: int
    amount: float
    method: SettlementMethod
    status: SettlementStatus
    reference_id: Optional[str] = None
    settled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
