"""AdBox — Inbox API Routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from adbox.api.dependencies import get_gateway_factory, get_message_events, split_ids
from adbox.api.streaming import STREAM_HEADERS, relay_events
from adbox.connectors.meta.client import MetaAPIError
from adbox.core.clock import utcnow
from adbox.core.logging import get_logger
from adbox.services import inbox_service
from adbox.store.repository import NotFoundError, Store, get_store
from adbox.sync.events import EventRegistry
from adbox.sync.pipeline import GatewayFactory
from adbox.sync.reconciler import conversation_payload, message_payload

logger = get_logger("api.inbox")

router = APIRouter(prefix="/inbox", tags=["Inbox"])


# ── Request Models ──


class ReplyRequest(BaseModel):
    """Request body for POST /inbox/conversations/{id}/reply."""

    text: str


# ── Reads ──


@router.get("/conversations")
async def list_conversations(
    page_ids: str = Query(..., description="Comma-separated page ids"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    store: Store = Depends(get_store),
):
    """Stored conversations for the given pages, newest activity first."""
    ids = split_ids(page_ids, required=True, name="page_ids")
    conversations = inbox_service.get_conversations(store, ids, limit)
    return {
        "status": "success",
        "count": len(conversations),
        "conversations": [conversation_payload(c) for c in conversations],
    }


@router.get("/conversations/{conversation_id}/messages")
async def list_messages(conversation_id: str, store: Store = Depends(get_store)):
    """Messages of one conversation, oldest first."""
    try:
        messages = inbox_service.get_messages(store, conversation_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "status": "success",
        "conversation_id": conversation_id,
        "messages": [message_payload(m) for m in messages],
    }


@router.get("/poll")
async def poll_new_messages(
    page_ids: Optional[str] = Query(None),
    exclude_ids: Optional[str] = Query(None),
    since: Optional[datetime] = Query(None),
    store: Store = Depends(get_store),
):
    """Latest participant messages not yet seen by the viewer."""
    ids = split_ids(page_ids)
    messages = (
        inbox_service.new_messages_since(store, ids, split_ids(exclude_ids), since)
        if ids
        else []
    )
    return {"messages": messages, "timestamp": utcnow().isoformat()}


@router.get("/stream")
async def stream_events(
    request: Request,
    page_ids: Optional[str] = Query(None),
    events: EventRegistry = Depends(get_message_events),
):
    """Server-Sent Events for the given pages."""
    ids = split_ids(page_ids, required=True, name="page_ids")
    logger.info(f"SSE connection for pages: {', '.join(ids)}")
    return StreamingResponse(
        relay_events(request, events, ids),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )


# ── Local Actions ──


@router.post("/conversations/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    store: Store = Depends(get_store),
    events: EventRegistry = Depends(get_message_events),
):
    try:
        conversation = inbox_service.mark_read(store, conversation_id, events)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "success", "conversation": conversation_payload(conversation)}


@router.post("/conversations/{conversation_id}/unread")
async def mark_unread(
    conversation_id: str,
    store: Store = Depends(get_store),
    events: EventRegistry = Depends(get_message_events),
):
    try:
        conversation = inbox_service.mark_unread(store, conversation_id, events)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"status": "success", "conversation": conversation_payload(conversation)}


@router.post("/conversations/{conversation_id}/reply")
async def send_reply(
    conversation_id: str,
    request: ReplyRequest,
    store: Store = Depends(get_store),
    gateway_factory: GatewayFactory = Depends(get_gateway_factory),
    events: EventRegistry = Depends(get_message_events),
):
    """Send a reply as the page; the message is pending until confirmed."""
    try:
        conversation = inbox_service.get_conversation(store, conversation_id)
        gateway = inbox_service.gateway_for_page(
            store, conversation.page_id, gateway_factory
        )
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    try:
        message = await inbox_service.send_reply(
            store, gateway, conversation_id, request.text, events
        )
    except inbox_service.ReplyError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except MetaAPIError as e:
        logger.error(f"Reply failed: {e}", extra={"conversation_id": conversation_id})
        raise HTTPException(status_code=502, detail=f"Send failed: {str(e)}")
    finally:
        await gateway.close()

    return {"status": "success", "message": message_payload(message)}
