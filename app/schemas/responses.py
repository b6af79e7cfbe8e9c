from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

from app.core.clock import isoformat
from app.models.agent_session import AgentSession
from app.models.company import Company
from app.models.customer import Customer
from app.models.order import Order
from app.models.rider import Rider


def money(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def rider_summary(rider: Optional[Rider]) -> Optional[Dict[str, Any]]:
    if rider is None:
        return None
    return {"id": rider.id, "name": rider.name, "phone": rider.phone}


def rider_to_dict(rider: Rider) -> Dict[str, Any]:
    return {
        "id": rider.id,
        "company_id": rider.company_id,
        "external_id": rider.external_id,
        "name": rider.name,
        "phone": rider.phone,
        "email": rider.email,
        "vehicle_type": rider.vehicle_type,
        "status": rider.status,
        "latitude": rider.latitude,
        "longitude": rider.longitude,
        "battery_level": rider.battery_level,
        "last_seen": isoformat(rider.last_seen),
        "created_at": isoformat(rider.created_at),
        "updated_at": isoformat(rider.updated_at),
    }


def customer_to_dict(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "external_id": customer.external_id,
        "name": customer.name,
        "phone": customer.phone,
        "email": customer.email,
        "addresses": customer.addresses or [],
        "total_orders": customer.total_orders,
        "total_spent": money(customer.total_spent),
        "created_at": isoformat(customer.created_at),
    }


def order_to_dict(order: Order) -> Dict[str, Any]:
    customer = order.customer
    return {
        "id": order.id,
        "company_id": order.company_id,
        "external_id": order.external_id,
        "customer_id": order.customer_id,
        "rider_id": order.rider_id,
        "customer_name": order.customer_name,
        "customer_phone": order.customer_phone,
        "customer_email": order.customer_email,
        "status": order.status,
        "payment_status": order.payment_status,
        "pickup_address": order.pickup_address,
        "delivery_address": order.delivery_address,
        "items": order.items or [],
        "subtotal": money(order.subtotal),
        "delivery_fee": money(order.delivery_fee),
        "total": money(order.total),
        "payment_method": order.payment_method,
        "notes": order.notes,
        "source": order.source,
        "scheduled_at": isoformat(order.scheduled_at),
        "picked_up_at": isoformat(order.picked_up_at),
        "delivered_at": isoformat(order.delivered_at),
        "created_at": isoformat(order.created_at),
        "updated_at": isoformat(order.updated_at),
        "rider": rider_summary(order.rider),
        "customer": (
            {"id": customer.id, "name": customer.name, "phone": customer.phone} if customer is not None else None
        ),
    }


def session_to_dict(session: AgentSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "device_id": session.device_id,
        "device_type": session.device_type,
        "device_model": session.device_model,
        "app_version": session.app_version,
        "is_active": session.is_active,
        "expires_at": isoformat(session.expires_at),
        "last_active": isoformat(session.last_active),
        "created_at": isoformat(session.created_at),
    }


def company_to_dict(company: Company, *, include_secrets: bool = False) -> Dict[str, Any]:
    data = {
        "id": company.id,
        "name": company.name,
        "email": company.email,
        "company_code": company.company_code,
        "plan": company.plan,
        "settings": company.settings or {},
        "created_at": isoformat(company.created_at),
        "updated_at": isoformat(company.updated_at),
    }
    if include_secrets:
        data["webhook_secret"] = company.webhook_secret
    return data


def rows_to_dicts(rows: List[Any], serializer) -> List[Dict[str, Any]]:
    return [serializer(row) for row in rows]
