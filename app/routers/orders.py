from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.deps import get_current_company
from app.fsm.orders import ORDER_UPDATED_EVENT, status_to_event
from app.models.company import Company
from app.schemas.responses import order_to_dict, pagination
from app.services.order_events import schedule_order_event
from app.services.orders import cancel_order, create_order, get_company_order, list_company_orders, update_order

router = APIRouter(prefix="/v1/orders", tags=["orders"])


class OrderCreatePayload(BaseModel):
    external_id: Optional[str] = None
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    rider_id: Optional[int] = None
    pickup_address: Optional[str] = None
    delivery_address: Optional[str] = None
    items: Optional[list[Any]] = None
    subtotal: Optional[float] = None
    delivery_fee: Optional[float] = None
    total: Optional[float] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    scheduled_at: Optional[datetime] = None


class OrderUpdatePayload(BaseModel):
    status: Optional[str] = None
    rider_id: Optional[int] = None
    payment_status: Optional[str] = None
    notes: Optional[str] = None
    delivery_address: Optional[str] = None
    pickup_address: Optional[str] = None


@router.get("")
def list_orders(
    status: Optional[str] = None,
    rider_id: Optional[int] = None,
    customer_id: Optional[int] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    rows, total = list_company_orders(
        db,
        company.id,
        status=status,
        rider_id=rider_id,
        customer_id=customer_id,
        page=page,
        limit=limit,
    )
    return {
        "success": True,
        "data": [order_to_dict(order) for order in rows],
        "pagination": pagination(page, limit, total),
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    payload: OrderCreatePayload,
    background_tasks: BackgroundTasks,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    order = create_order(db, company, payload.model_dump())
    schedule_order_event(background_tasks, company, order, "order.created")
    return {"success": True, "message": "Order created", "data": order_to_dict(order)}


@router.get("/{order_id}")
def get_order(order_id: int, company: Company = Depends(get_current_company), db: Session = Depends(get_db)):
    return {"success": True, "data": order_to_dict(get_company_order(db, company.id, order_id))}


@router.patch("/{order_id}")
def patch_order(
    order_id: int,
    payload: OrderUpdatePayload,
    background_tasks: BackgroundTasks,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    order, result = update_order(db, company, order_id, payload.model_dump(exclude_unset=True))
    event = status_to_event(result.current) if result is not None and result.changed else ORDER_UPDATED_EVENT
    schedule_order_event(background_tasks, company, order, event)
    return {"success": True, "message": "Order updated", "data": order_to_dict(order)}


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    background_tasks: BackgroundTasks,
    company: Company = Depends(get_current_company),
    db: Session = Depends(get_db),
):
    order = cancel_order(db, company, order_id)
    schedule_order_event(background_tasks, company, order, "order.cancelled")
    return {"success": True, "message": "Order cancelled", "data": order_to_dict(order)}
