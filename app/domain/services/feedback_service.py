"""
Feedback Service - Customer ratings of completed deliveries
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import (
    AppException,
    ConflictException,
    ErrorCode,
    OrderNotFoundError,
    ValidationException,
)
from app.core.logging import get_logger
from app.db.models.delivery_feedback import DeliveryFeedback
from app.db.models.delivery_worker import DeliveryWorker
from app.db.models.order import Order

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def _already_reviewed(order_id: int) -> ConflictException:
    return ConflictException(
        f"Feedback for order {order_id} was already submitted",
        error_code=ErrorCode.ORDER_ALREADY_REVIEWED,
        details={"order_id": order_id},
    )


class FeedbackService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def submit_feedback(
        self,
        order_id: int,
        customer_id: Optional[int],
        rating,
        tags: Optional[List[str]] = None,
        comments: Optional[str] = None,
    ) -> DeliveryFeedback:
        """
        Store the customer's rating and refresh the worker's average.

        The order must be delivered and assigned; one feedback per order.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationException(
                f"Rating must be an integer between {MIN_RATING} and {MAX_RATING}",
                field="rating",
            )

        order = await self.db.get(Order, order_id)
        if not order:
            raise OrderNotFoundError(order_id)
        if order.delivered_time is None or order.assigned_worker_id is None:
            raise ConflictException(
                "Only delivered orders can be rated",
                error_code=ErrorCode.ORDER_INVALID_STATUS,
                details={"order_id": order_id},
            )

        existing = await self.db.execute(
            select(DeliveryFeedback.id).where(DeliveryFeedback.order_id == order_id)
        )
        if existing.scalar_one_or_none() is not None:
            raise _already_reviewed(order_id)

        worker_id = order.assigned_worker_id
        feedback = DeliveryFeedback(
            order_id=order_id,
            worker_id=worker_id,
            customer_id=customer_id,
            rating=rating,
            tags=[str(tag).strip() for tag in (tags or []) if str(tag).strip()],
            comments=(comments or "").strip() or None,
        )

        try:
            self.db.add(feedback)
            await self.db.flush()

            avg_result = await self.db.execute(
                select(func.avg(DeliveryFeedback.rating)).where(DeliveryFeedback.worker_id == worker_id)
            )
            average = Decimal(str(avg_result.scalar() or 0)).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )
            await self.db.execute(
                update(DeliveryWorker)
                .where(DeliveryWorker.id == worker_id)
                .values(rating=average)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except IntegrityError:
            # Unique (order_id, worker_id) caught a concurrent submission
            await self.db.rollback()
            raise _already_reviewed(order_id)
        except SQLAlchemyError as e:
            logger.error(
                "Failed to store feedback",
                extra_data={"order_id": order_id, "error": str(e)},
                exc_info=True,
            )
            await self.db.rollback()
            raise
        except AppException:
            await self.db.rollback()
            raise

        logger.info(
            "Delivery feedback submitted",
            extra_data={
                "order_id": order_id,
                "worker_id": worker_id,
                "rating": rating,
                "worker_rating": str(average),
            }
        )
        await self.db.refresh(feedback)
        return feedback
