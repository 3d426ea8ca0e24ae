"""AdBox — Facebook Webhook Routes."""

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from adbox.api.dependencies import get_ad_events, get_gateway_factory, get_message_events
from adbox.config import settings
from adbox.core.logging import get_logger
from adbox.services.inbox_service import gateway_for_page
from adbox.store.repository import Store, get_store
from adbox.sync.events import EventRegistry
from adbox.sync.pipeline import GatewayFactory
from adbox.sync.webhook import UnsupportedWebhookObject, handle_payload, verify_signature

logger = get_logger("api.webhook")

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.get("/facebook", response_class=PlainTextResponse)
async def verify_subscription(
    hub_mode: Optional[str] = Query(None, alias="hub.mode"),
    hub_verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    hub_challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Subscription handshake from the App Dashboard."""
    if not hub_mode or not hub_verify_token:
        raise HTTPException(status_code=400, detail="Bad Request")
    if (
        hub_mode == "subscribe"
        and settings.webhook_verify_token
        and hub_verify_token == settings.webhook_verify_token
    ):
        logger.info("Webhook verified")
        return hub_challenge or ""
    raise HTTPException(status_code=403, detail="Forbidden")


@router.post("/facebook", response_class=PlainTextResponse)
async def receive_webhook(
    request: Request,
    store: Store = Depends(get_store),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    inbox_events: EventRegistry = Depends(get_message_events),
    ads_events: EventRegistry = Depends(get_ad_events),
):
    body = await request.body()
    if settings.meta_app_secret:
        if not verify_signature(
            settings.meta_app_secret, body, request.headers.get("x-hub-signature-256")
        ):
            logger.warning("Invalid or missing X-Hub-Signature-256")
            raise HTTPException(status_code=401, detail="Unauthorized")
    else:
        logger.warning("meta_app_secret not set, skipping webhook signature check")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    async def name_lookup(page_id: str, user_id: str) -> Optional[str]:
        gateway = gateway_for_page(store, page_id, gateway_factory)
        try:
            return await gateway.get_user_name(page_id, user_id)
        finally:
            await gateway.close()

    try:
        handled = await handle_payload(store, payload, name_lookup, inbox_events, ads_events)
    except UnsupportedWebhookObject as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info(f"Webhook processed {handled} events")
    return "EVENT_RECEIVED"
