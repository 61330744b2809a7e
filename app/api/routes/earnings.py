"""
Earnings API Routes
"""
from datetime import date, datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.auth import get_current_worker_id
from app.api.routes.schemas import OrderResponse
from app.db.database import get_db
from app.domain.services.earnings_service import EarningsService

router = APIRouter()


class EarningsResponse(BaseModel):
    total_earnings: float
    total_deliveries: int
    period: str
    orders: List[OrderResponse]
    start_date: datetime
    end_date: datetime


class TodayEarningResponse(BaseModel):
    local_date: date
    orders_count: int
    total_earning: float
    per_order_earning: float
    currency: str
    time_on_orders_minutes: int
    time_on_orders: str


class DayEarning(BaseModel):
    day: str
    local_date: date
    orders_count: int
    earning: float
    time_on_orders_minutes: int
    time_on_orders: str


class WeeklyBreakdownResponse(BaseModel):
    start_date: date
    end_date: date
    total_orders: int
    total_earning: float
    currency: str
    total_time_minutes: int
    total_time: str
    daily_breakdown: List[DayEarning]


@router.get(
    "",
    response_model=EarningsResponse,
    summary="Earnings for a period",
    description=(
        "Delivered orders in the period times the per-delivery rate. period is today, week "
        "(Sunday to now) or month; unknown values fall back to today. Boundaries use the "
        "configured local timezone and are returned in UTC."
    ),
)
async def get_earnings(
    period: str = Query("today"),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await EarningsService(db).get_earnings(worker_id, period)


@router.get("/today", response_model=TodayEarningResponse, summary="Today's earning card")
async def get_today_earning(
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await EarningsService(db).get_today_earning(worker_id)


@router.get(
    "/weekly-breakdown",
    response_model=WeeklyBreakdownResponse,
    summary="Day-by-day earnings for a week",
    description="Seven local days from start_date (YYYY-MM-DD). Defaults to this week's Monday.",
)
async def get_weekly_breakdown(
    start_date: Optional[date] = Query(None),
    worker_id: int = Depends(get_current_worker_id),
    db: AsyncSession = Depends(get_db),
):
    return await EarningsService(db).get_weekly_breakdown(worker_id, week_start=start_date)
