"""Inbound webhooks: the generic event feed plus Shopify and WooCommerce."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from app.core.config import WEBHOOK_REQUIRE_SIGNATURE
from app.core.database import get_db
from app.core.errors import InvalidCredentials, MissingAuth, ValidationError
from app.models.company import Company
from app.services.api_keys import authenticate_api_key
from app.services.inbound_events import process_event
from app.services.partner_orders import (
    cancel_partner_order,
    ingest_partner_order,
    require_order_id,
    shopify_to_partner_order,
    verify_woocommerce_signature,
    woocommerce_to_partner_order,
)
from app.services.webhooks import verify_signature

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = logging.getLogger(__name__)

WOOCOMMERCE_UPSERT_TOPICS = ("order.created", "order.updated")
WOOCOMMERCE_DELETE_TOPIC = "order.deleted"


def _parse_json(raw: bytes) -> Any:
    try:
        return json.loads(raw or b"null")
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc


def _company_from_key(db: Session, api_key: Optional[str], missing_message: str) -> Company:
    if not api_key:
        raise MissingAuth(missing_message)
    return authenticate_api_key(db, api_key)


def _signature_accepted(raw: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    if not secret:
        return True
    if signature is None and not WEBHOOK_REQUIRE_SIGNATURE:
        return True
    return verify_signature(raw, signature, secret)


@router.post("")
async def receive_event(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    x_webhook_signature: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    company = _company_from_key(db, x_api_key, "API key required in x-api-key header")
    raw = await request.body()
    if not _signature_accepted(raw, x_webhook_signature, company.webhook_secret):
        logger.warning("inbound webhook signature rejected", extra={"tenant_id": company.id})
        raise InvalidCredentials("Invalid webhook signature")

    body = _parse_json(raw)
    if not isinstance(body, dict):
        raise ValidationError("Event type is required")
    event = body.get("event")
    process_event(db, company, event, body.get("data"))
    return {"success": True, "message": f"Event '{event}' processed successfully"}


@router.post("/shopify")
async def receive_shopify(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    x_shopify_topic: Optional[str] = Header(default=None),
    x_shopify_shop_domain: Optional[str] = Header(default=None),
    x_shopify_hmac_sha256: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    api_key = x_api_key
    if not api_key and authorization and authorization.startswith("Bearer "):
        api_key = authorization[len("Bearer "):].strip()
    company = _company_from_key(db, api_key, "Missing API key. Add x-api-key header.")

    logger.info(
        "shopify webhook received shop=%s hmac_present=%s",
        x_shopify_shop_domain,
        bool(x_shopify_hmac_sha256),
        extra={"tenant_id": company.id, "event": x_shopify_topic, "integration": "shopify"},
    )

    payload = _parse_json(await request.body())
    partner = shopify_to_partner_order(payload, shop_domain=x_shopify_shop_domain)
    order, created = ingest_partner_order(db, company, partner)
    return {
        "success": True,
        "message": "Shopify order received" if created else "Order updated",
        "order_id": order.id,
        "external_id": order.external_id,
    }


@router.post("/woocommerce")
async def receive_woocommerce(
    request: Request,
    x_api_key: Optional[str] = Header(default=None),
    x_wc_webhook_signature: Optional[str] = Header(default=None),
    x_wc_webhook_topic: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
):
    company = _company_from_key(
        db,
        x_api_key,
        "API key required. Add x-api-key header or configure in WooCommerce webhook settings.",
    )
    raw = await request.body()
    if x_wc_webhook_signature and company.webhook_secret:
        if not verify_woocommerce_signature(raw, x_wc_webhook_signature, company.webhook_secret):
            # some WooCommerce installs re-encode the body before signing
            logger.warning("woocommerce signature mismatch", extra={"tenant_id": company.id})

    payload = _parse_json(raw)
    topic = x_wc_webhook_topic
    if topic in WOOCOMMERCE_UPSERT_TOPICS:
        partner = woocommerce_to_partner_order(payload)
        order, _ = ingest_partner_order(db, company, partner, full_update=True, link_customer=True)
        logger.info(
            "woocommerce order stored",
            extra={"tenant_id": company.id, "external_id": order.external_id, "event": topic},
        )
    elif topic == WOOCOMMERCE_DELETE_TOPIC:
        external_id = f"woo_{require_order_id(payload, 'WooCommerce')}"
        cancelled = cancel_partner_order(db, company.id, external_id)
        logger.info(
            "woocommerce delete cancelled %d order(s)",
            cancelled,
            extra={"tenant_id": company.id, "external_id": external_id, "event": topic},
        )
    else:
        logger.info("woocommerce topic ignored", extra={"tenant_id": company.id, "event": topic})

    return {
        "success": True,
        "message": f"WooCommerce webhook processed: {topic}",
        "company": company.name,
    }


@router.get("/woocommerce")
def woocommerce_setup():
    return {
        "name": "WooCommerce Webhook Endpoint",
        "version": "1.0",
        "description": "Receives order webhooks from WooCommerce/WordPress sites",
        "setup": {
            "step1": "Go to WooCommerce > Settings > Advanced > Webhooks",
            "step2": 'Click "Add Webhook"',
            "step3": "Configure with these settings:",
            "settings": {
                "name": "Fleet Dispatch Integration",
                "status": "Active",
                "topic": "Order created (for new orders) or Order updated (for status changes)",
                "delivery_url": "https://your-domain.com/webhooks/woocommerce",
                "secret": "Use the webhook secret from your company settings",
            },
            "step4": "Add custom header: x-api-key with your Fleet Dispatch API key",
        },
        "supported_topics": [*WOOCOMMERCE_UPSERT_TOPICS, WOOCOMMERCE_DELETE_TOPIC],
        "headers_required": ["x-api-key: Your Fleet Dispatch API key"],
        "headers_optional": [
            "x-wc-webhook-signature: WooCommerce signature (auto-sent)",
            "x-wc-webhook-topic: Event type (auto-sent)",
        ],
    }
