from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import BackgroundTasks

from app.core.clock import isoformat
from app.core.request_context import snapshot_request_context
from app.models.company import Company
from app.models.order import Order
from app.schemas.responses import money
from app.services.webhooks import WebhookConfig, dispatch_webhook

logger = logging.getLogger(__name__)


def webhook_config_for(company: Company) -> Optional[WebhookConfig]:
    """Callback target of a tenant, or None when it has not configured one."""
    settings = company.settings or {}
    url = settings.get("callback_url") or settings.get("webhook_callback_url")
    if not url or not company.webhook_secret:
        return None
    return WebhookConfig(url=url, secret=company.webhook_secret, tenant_id=company.id)


def format_order_payload(order: Order, **overrides: Any) -> dict[str, Any]:
    customer = order.customer
    rider = order.rider
    payload = {
        "order_id": order.id,
        "external_id": order.external_id,
        "status": order.status,
        "customer_name": order.customer_name or (customer.name if customer else None),
        "customer_phone": order.customer_phone or (customer.phone if customer else None),
        "delivery_address": order.delivery_address,
        "pickup_address": order.pickup_address,
        "items": order.items or [],
        "total": money(order.total),
        "rider_id": order.rider_id,
        "rider_name": rider.name if rider else None,
        "notes": order.notes,
        "created_at": isoformat(order.created_at),
        "picked_up_at": isoformat(order.picked_up_at),
        "delivered_at": isoformat(order.delivered_at),
    }
    payload.update({key: value for key, value in overrides.items() if value is not None})
    return payload


def schedule_order_event(
    background_tasks: BackgroundTasks,
    company: Company,
    order: Order,
    event: str,
    **overrides: Any,
) -> bool:
    config = webhook_config_for(company)
    if config is None:
        return False
    payload = format_order_payload(order, **overrides)
    background_tasks.add_task(dispatch_webhook, config, event, payload, snapshot_request_context())
    logger.info("webhook scheduled", extra={"tenant_id": company.id, "event": event})
    return True
