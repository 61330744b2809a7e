"""
Earnings Service - Delivered-order earnings and worked hours per period

Period windows are computed in the business timezone (LOCAL_TIMEZONE) and
converted to naive UTC, which is how every timestamp is stored.
"""
import calendar
from datetime import datetime, date, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.config import settings
from app.db.models.order import Order, OrderStatus
from app.db.models.work_log import WorkLog

PERIODS = ("today", "week", "month")

_DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def _to_naive_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _local_now(now: Optional[datetime], tz: ZoneInfo) -> datetime:
    """`now` is naive UTC (or aware); returns aware local time"""
    now = now or datetime.utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(tz)


def _midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def _month_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    last_day = calendar.monthrange(day.year, day.month)[1]
    start = _midnight(day.replace(day=1), tz)
    end = _midnight(day.replace(day=last_day) + timedelta(days=1), tz)
    return start, end


def period_bounds(
    period: str,
    now: Optional[datetime] = None,
    tz: Optional[str] = None,
) -> tuple[datetime, datetime, str]:
    """
    Window for an earnings period as (start, end, period) in naive UTC.
    ``start`` is inclusive and ``end`` exclusive.

    - today: local midnight .. next local midnight
    - week:  Sunday 00:00 local .. now
    - month: 1st 00:00 .. 1st of next month 00:00

    Unknown periods fall back to "today".
    """
    zone = ZoneInfo(tz or settings.LOCAL_TIMEZONE)
    local_now = _local_now(now, zone)
    today = local_now.date()

    if period == "week":
        days_since_sunday = (local_now.weekday() + 1) % 7
        start = _midnight(today - timedelta(days=days_since_sunday), zone)
        end = local_now
    elif period == "month":
        start, end = _month_bounds(today, zone)
    else:
        period = "today"
        start = _midnight(today, zone)
        end = _midnight(today + timedelta(days=1), zone)

    return _to_naive_utc(start), _to_naive_utc(end), period


def work_summary_bounds(
    now: Optional[datetime] = None,
    tz: Optional[str] = None,
) -> dict[str, tuple[datetime, datetime]]:
    """today / this_week (Monday start) / this_month as [start, end) in naive UTC"""
    zone = ZoneInfo(tz or settings.LOCAL_TIMEZONE)
    local_now = _local_now(now, zone)
    today = local_now.date()

    week_start = today - timedelta(days=local_now.weekday())
    windows = {
        "today": (_midnight(today, zone), _midnight(today + timedelta(days=1), zone)),
        "this_week": (_midnight(week_start, zone), _midnight(week_start + timedelta(days=7), zone)),
        "this_month": _month_bounds(today, zone),
    }
    return {
        key: (_to_naive_utc(start), _to_naive_utc(end))
        for key, (start, end) in windows.items()
    }


def time_on_orders_minutes(orders) -> int:
    """Accepted-to-delivered time summed over the orders, in whole minutes"""
    seconds = sum(
        (order.delivered_time - order.accepted_at).total_seconds()
        for order in orders
        if order.accepted_at and order.delivered_time
    )
    return round(seconds / 60)


def format_hours_minutes(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d} hr"


def _rate() -> Decimal:
    return Decimal(str(settings.EARNING_RATE_PER_DELIVERY))


def _minutes_block(minutes: int) -> dict:
    return {
        "total_minutes": minutes,
        "total_hours": f"{minutes / 60:.2f}",
    }


class EarningsService:
    """Service for worker earnings and work-hour summaries"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _delivered_between(self, worker_id: int, start: datetime, end: datetime) -> list[Order]:
        result = await self.db.execute(
            select(Order)
            .where(
                Order.assigned_worker_id == worker_id,
                Order.status == OrderStatus.DELIVERED,
                Order.delivered_time >= start,
                Order.delivered_time < end,
            )
            .order_by(Order.delivered_time.desc())
        )
        return list(result.scalars().all())

    async def get_earnings(
        self,
        worker_id: int,
        period: str = "today",
        now: Optional[datetime] = None,
    ) -> dict:
        start, end, period = period_bounds(period, now)
        orders = await self._delivered_between(worker_id, start, end)
        return {
            "total_earnings": _rate() * len(orders),
            "total_deliveries": len(orders),
            "period": period,
            "orders": orders,
            "start_date": start,
            "end_date": end,
        }

    async def get_today_earning(self, worker_id: int, now: Optional[datetime] = None) -> dict:
        """Quick card for today: orders, earning and time spent on orders"""
        start, end, _ = period_bounds("today", now)
        orders = await self._delivered_between(worker_id, start, end)
        minutes = time_on_orders_minutes(orders)
        local_day = _local_now(now, ZoneInfo(settings.LOCAL_TIMEZONE)).date()
        return {
            "local_date": local_day,
            "orders_count": len(orders),
            "total_earning": _rate() * len(orders),
            "per_order_earning": _rate(),
            "currency": settings.CURRENCY,
            "time_on_orders_minutes": minutes,
            "time_on_orders": format_hours_minutes(minutes),
        }

    async def get_weekly_breakdown(
        self,
        worker_id: int,
        week_start: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """
        Day-by-day earnings for seven local days from ``week_start``
        (default: this week's Monday).
        """
        zone = ZoneInfo(settings.LOCAL_TIMEZONE)
        if week_start is None:
            today = _local_now(now, zone).date()
            week_start = today - timedelta(days=today.weekday())

        bounds = [_to_naive_utc(_midnight(week_start + timedelta(days=i), zone)) for i in range(8)]
        orders = await self._delivered_between(worker_id, bounds[0], bounds[7])

        days = []
        for i in range(7):
            day = week_start + timedelta(days=i)
            day_orders = [o for o in orders if bounds[i] <= o.delivered_time < bounds[i + 1]]
            minutes = time_on_orders_minutes(day_orders)
            days.append({
                "day": _DAY_NAMES[day.weekday()],
                "local_date": day,
                "orders_count": len(day_orders),
                "earning": _rate() * len(day_orders),
                "time_on_orders_minutes": minutes,
                "time_on_orders": format_hours_minutes(minutes),
            })

        total_minutes = time_on_orders_minutes(orders)
        return {
            "start_date": week_start,
            "end_date": week_start + timedelta(days=6),
            "total_orders": len(orders),
            "total_earning": _rate() * len(orders),
            "currency": settings.CURRENCY,
            "total_time_minutes": total_minutes,
            "total_time": format_hours_minutes(total_minutes),
            "daily_breakdown": days,
        }

    async def get_work_summary(self, worker_id: int, now: Optional[datetime] = None) -> dict:
        """Minutes worked today, this week and this month"""
        now_utc = now or datetime.utcnow()
        if now_utc.tzinfo is not None:
            now_utc = _to_naive_utc(now_utc)

        windows = work_summary_bounds(now_utc)
        month_start, month_end = windows["this_month"]
        week_start, _ = windows["this_week"]
        earliest = min(month_start, week_start)

        result = await self.db.execute(
            select(WorkLog)
            .where(
                WorkLog.worker_id == worker_id,
                WorkLog.check_in >= earliest,
            )
        )
        logs = list(result.scalars().all())

        summary = {}
        for key, (start, end) in windows.items():
            minutes = 0
            for log in logs:
                if not (start <= log.check_in < end):
                    continue
                if log.check_out is None:
                    # Open shift counts up to now
                    minutes += max(int((now_utc - log.check_in).total_seconds() // 60), 0)
                else:
                    minutes += log.total_minutes or 0
            summary[key] = _minutes_block(minutes)
        return summary
