from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import start_of_day, utcnow
from app.core.database import get_db
from app.deps import get_current_company
from app.fsm.orders import OrderStatus
from app.models.company import Company
from app.models.customer import Customer
from app.models.order import Order
from app.models.rider import Rider

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])

PERIODS = ("today", "yesterday", "last_7_days", "last_30_days", "this_month")


def resolve_period(period: str, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Inclusive UTC window for a KPI period; unknown names mean today."""
    now = now or utcnow()
    today = start_of_day(now)
    if period == "yesterday":
        return today - timedelta(days=1), today - timedelta(microseconds=1)
    if period == "last_7_days":
        return now - timedelta(days=7), now
    if period == "last_30_days":
        return now - timedelta(days=30), now
    if period == "this_month":
        return today.replace(day=1), now
    return today, now


def _order_total_expression() -> Any:
    return func.coalesce(func.sum(Order.total), 0)


@router.get("/kpis")
def kpis(
    period: str = "today",
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    start, end = resolve_period(period)
    in_window = (
        Order.company_id == company.id,
        Order.created_at >= start,
        Order.created_at <= end,
    )

    total_orders = db.query(func.count(Order.id)).filter(*in_window).scalar() or 0
    delivered_orders = (
        db.query(func.count(Order.id)).filter(*in_window, Order.status == OrderStatus.DELIVERED.value).scalar() or 0
    )
    pending_orders = (
        db.query(func.count(Order.id)).filter(*in_window, Order.status == OrderStatus.PENDING.value).scalar() or 0
    )
    revenue = float(
        db.query(_order_total_expression()).filter(*in_window, Order.status == OrderStatus.DELIVERED.value).scalar()
        or 0
    )

    active_riders = (
        db.query(func.count(Rider.id))
        .filter(Rider.company_id == company.id, Rider.status.in_(("active", "busy")))
        .scalar()
        or 0
    )
    total_riders = db.query(func.count(Rider.id)).filter(Rider.company_id == company.id).scalar() or 0
    total_customers = db.query(func.count(Customer.id)).filter(Customer.company_id == company.id).scalar() or 0

    delivery_rate = round(delivered_orders / total_orders * 100, 1) if total_orders else 0
    avg_order_value = round(revenue / delivered_orders, 2) if delivered_orders else 0

    return {
        "success": True,
        "data": {
            "period": period if period in PERIODS else "today",
            "total_orders": total_orders,
            "delivered_orders": delivered_orders,
            "pending_orders": pending_orders,
            "revenue": round(revenue, 2),
            "active_riders": active_riders,
            "total_riders": total_riders,
            "total_customers": total_customers,
            "delivery_rate": delivery_rate,
            "avg_order_value": avg_order_value,
        },
    }
