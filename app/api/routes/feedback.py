"""
Feedback API Routes - called by the customer-facing service (X-Admin-API-Key)
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.db.database import get_db
from app.domain.services.feedback_service import FeedbackService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class SubmitFeedbackRequest(BaseModel):
    order_id: int
    customer_id: Optional[int] = None
    # Range is checked by the service so the error is a 400 with field=rating
    rating: int
    tags: List[str] = Field(default_factory=list, max_length=10)
    comments: Optional[str] = None

    @field_validator("comments")
    @classmethod
    def limit_comments(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v[:1000]


class FeedbackResponse(BaseModel):
    id: int
    order_id: int
    worker_id: int
    customer_id: Optional[int] = None
    rating: int
    tags: List[str]
    comments: Optional[str] = None
    submitted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


@router.post(
    "",
    response_model=FeedbackResponse,
    summary="Submit delivery feedback",
    responses={
        400: {"description": "Rating outside 1-5"},
        404: {"description": "Order not found"},
        409: {"description": "Order not delivered or already reviewed"},
    },
)
async def submit_feedback(
    data: SubmitFeedbackRequest,
    db: AsyncSession = Depends(get_db),
):
    return await FeedbackService(db).submit_feedback(
        data.order_id,
        data.customer_id,
        data.rating,
        tags=data.tags,
        comments=data.comments,
    )
