"""
Tracking Service - Composed map/timeline view of an order for the rider app
"""
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.config import settings
from app.core.geo import map_point, distance_km, estimate_eta_minutes, build_navigation_url
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.order import Order
from app.db.models.payment import Payment, PaymentStatus
from app.db.models.store import Store
from app.domain.services.delivery_service import DeliveryService
from app.domain.services.wallet_service import to_money, ZERO
from app.state_machine.lifecycle import (
    build_timeline_steps,
    derive_order_stage,
    next_action,
    stage_label,
)
from app.state_machine.states import OrderStage

# Before pickup the rider heads to the store; afterwards to the customer
_TO_STORE_STAGES = (OrderStage.UNASSIGNED, OrderStage.ACCEPTED)


class TrackingService:
    """Builds the tracking overview shown on the rider's order screen"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_order_tracking_overview(self, order_id: int, worker_id: int) -> dict:
        # Unassigned orders can be previewed from the new-orders list
        order = await DeliveryService(self.db).get_order_details(order_id, worker_id)

        store = await self.db.get(Store, order.store_id) if order.store_id else None
        rider = None
        if order.assigned_worker_id is not None:
            rider = await self.db.get(DeliveryWorker, order.assigned_worker_id)

        stage = derive_order_stage(order)

        pickup = map_point(
            order.pickup_lat if order.pickup_lat is not None else (store.lat if store else None),
            order.pickup_lng if order.pickup_lng is not None else (store.lng if store else None),
        )
        drop = map_point(order.drop_lat, order.drop_lng)
        rider_point = map_point(rider.current_lat, rider.current_lng) if rider else None

        destination = pickup if stage in _TO_STORE_STAGES else drop
        origin = rider_point
        if origin is None and stage not in _TO_STORE_STAGES:
            # No live position yet: measure the leg from the store
            origin = pickup

        distance = None
        if stage != OrderStage.DELIVERED and origin and destination:
            distance = distance_km(origin["lat"], origin["lng"], destination["lat"], destination["lng"])

        summary = await self._payment_summary(order)

        return {
            "order_id": order.id,
            "order_number": order.order_number,
            "status": order.status,
            "stage": stage,
            "stage_label": stage_label(stage),
            "eta_minutes": estimate_eta_minutes(distance, settings.AVERAGE_RIDER_SPEED_KMPH),
            "summary": summary,
            "map": {
                "pickup": pickup,
                "drop": drop,
                "rider": rider_point,
                "distance_km": distance,
            },
            "timeline": build_timeline_steps(order),
            "contacts": {
                "store": self._store_contact(order, store),
                "customer": {
                    "name": order.customer_name,
                    "phone": order.customer_phone,
                    "address": order.drop_address,
                },
            },
            "primary_action": next_action(stage),
            "navigation_url": (
                build_navigation_url(destination["lat"], destination["lng"])
                if destination and stage != OrderStage.DELIVERED
                else None
            ),
        }

    async def _payment_summary(self, order: Order) -> dict:
        result = await self.db.execute(
            select(Payment.amount).where(
                Payment.order_id == order.id,
                Payment.status.in_((PaymentStatus.SUCCESS, PaymentStatus.SETTLED)),
            )
        )
        collected = sum((to_money(amount) for amount in result.scalars().all()), ZERO)
        grand_total = to_money(order.grand_total)
        return {
            "grand_total": grand_total,
            "shipping_fee": to_money(order.shipping_fee),
            "discount": to_money(order.discount_amount),
            "collected": collected,
            "pending": max(grand_total - collected, ZERO),
        }

    @staticmethod
    def _store_contact(order: Order, store: Optional[Store]) -> Optional[dict]:
        if store is None and not order.pickup_address:
            return None
        return {
            "name": store.name if store else None,
            "owner_name": store.owner_name if store else None,
            "phone": store.owner_phone if store else None,
            "address": order.pickup_address or (store.address if store else None),
        }
