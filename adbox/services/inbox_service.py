"""AdBox — Inbox Service (viewer surface).

Read-through queries and local actions used by the HTTP layer. Local
actions write the store directly and publish to the fan-out registry; they
stay consistent with reconciliation because the arbitration rule honours
``last_read_at`` and pending replies are confirmed by the next poll.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.core.clock import as_utc, utcnow
from adbox.core.logging import get_logger
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.inbox_models import Conversation, Message
from adbox.models.tenant_models import Page, Tenant
from adbox.store.repository import NotFoundError, Store
from adbox.sync.events import EventRegistry, Listener, Unsubscribe, message_events
from adbox.sync.pipeline import GatewayFactory, meta_gateway_factory
from adbox.sync.reconciler import (
    LOCAL_ID_PREFIX,
    confirm_pending_message,
    conversation_payload,
    message_payload,
)

logger = get_logger("services.inbox")

POLL_MESSAGE_LIMIT = 10


class ReplyError(Exception):
    """A reply could not be sent for a reason the caller can fix."""


def subscribe(
    page_ids: Iterable[str], listener: Listener, events: EventRegistry = message_events
) -> Unsubscribe:
    return events.subscribe(page_ids, listener)


def _publish_conversation(events: EventRegistry, conversation: Conversation) -> None:
    events.publish(
        conversation.page_id,
        SyncEvent(
            type=EventType.CONVERSATION_UPDATED.value,
            data={"conversation": conversation_payload(conversation)},
        ),
    )


# ── Reads ──


def get_conversations(
    store: Store, page_ids: Iterable[str], limit: Optional[int] = None
) -> List[Conversation]:
    """Conversations of the given pages, newest activity first."""
    return store.find_by_scope(
        Conversation,
        "page_id",
        page_ids,
        limit=limit,
        order_by=Conversation.last_message_at.desc(),  # type: ignore[attr-defined]
    )


def get_conversation(store: Store, conversation_id: str) -> Conversation:
    conversation = store.find_by_id(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError(f"Conversation {conversation_id} not found")
    return conversation


def get_messages(store: Store, conversation_id: str) -> List[Message]:
    """Messages of one conversation in display order (oldest first)."""
    get_conversation(store, conversation_id)
    return store.find_where(
        Message,
        Message.conversation_id == conversation_id,
        order_by=(Message.created_at, Message.id),
    )


def new_messages_since(
    store: Store,
    page_ids: Iterable[str],
    exclude_ids: Iterable[str] = (),
    since: Optional[datetime] = None,
    limit: int = POLL_MESSAGE_LIMIT,
) -> List[Dict[str, Any]]:
    """Latest participant messages for polling viewers that missed pushes."""
    conversations = {c.id: c for c in get_conversations(store, page_ids)}
    if not conversations:
        return []

    conditions = [
        Message.conversation_id.in_(list(conversations)),  # type: ignore[attr-defined]
        Message.is_from_page == False,  # noqa: E712
    ]
    excluded = [i for i in exclude_ids if i]
    if excluded:
        conditions.append(Message.id.not_in(excluded))  # type: ignore[attr-defined]
    if since is not None:
        conditions.append(Message.created_at > as_utc(since))

    rows = store.find_where(
        Message,
        *conditions,
        order_by=Message.created_at.desc(),  # type: ignore[attr-defined]
        limit=limit,
    )
    messages = []
    for row in rows:
        conversation = conversations[row.conversation_id]
        payload = message_payload(row, conversation.page_id)
        if row.sender_name in ("", "Unknown"):
            payload["sender_name"] = conversation.participant_name
        messages.append(payload)
    return messages


# ── Local actions ──


def mark_read(
    store: Store, conversation_id: str, events: EventRegistry = message_events
) -> Conversation:
    """Zero the unread count and stamp ``last_read_at``."""
    conversation = store.update(
        Conversation,
        conversation_id,
        {"unread_count": 0, "last_read_at": utcnow(), "updated_at": utcnow()},
    )
    _publish_conversation(events, conversation)
    return conversation


def mark_unread(
    store: Store, conversation_id: str, events: EventRegistry = message_events
) -> Conversation:
    """Flag a conversation unread until the platform reports otherwise."""

    def merge(existing: Optional[Conversation]) -> Dict[str, Any]:
        if existing is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        return {
            "unread_count": max(1, existing.unread_count),
            "last_read_at": None,
            "updated_at": utcnow(),
        }

    conversation = store.upsert_with(Conversation, conversation_id, merge)
    _publish_conversation(events, conversation)
    return conversation


def gateway_for_page(
    store: Store, page_id: str, factory: GatewayFactory = meta_gateway_factory
) -> RemotePlatformGateway:
    page = store.find_by_id(Page, page_id)
    if page is None:
        raise NotFoundError(f"Page {page_id} not found")
    tenant = store.find_by_id(Tenant, page.tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {page.tenant_id} not found")
    return factory(tenant, [page])


async def send_reply(
    store: Store,
    gateway: RemotePlatformGateway,
    conversation_id: str,
    text: str,
    events: EventRegistry = message_events,
) -> Message:
    """Send a page reply, storing it as pending until the platform id is known."""
    text = (text or "").strip()
    if not text:
        raise ReplyError("Reply text is empty")
    conversation = get_conversation(store, conversation_id)
    if not conversation.participant_id:
        raise ReplyError(f"Conversation {conversation_id} has no known participant")

    now = utcnow()
    pending = store.add(
        Message(
            id=f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}",
            conversation_id=conversation_id,
            sender_id=conversation.page_id,
            sender_name="Page",
            content=text,
            created_at=now,
            is_from_page=True,
            is_pending=True,
        )
    )

    try:
        result = await gateway.send_message(
            conversation.page_id, conversation.participant_id, text
        )
    except Exception:
        store.delete(Message, pending.id)
        raise

    message = pending
    if result.message_id:
        try:
            message = confirm_pending_message(store, pending.id, result.message_id, now)
        except NotFoundError:
            # A poll already matched and replaced the pending row
            message = store.find_by_id(Message, result.message_id) or pending
    else:
        logger.warning(
            "Send returned no message id; reply stays pending until next poll",
            extra={"conversation_id": conversation_id},
        )

    def merge(existing: Optional[Conversation]) -> Dict[str, Any]:
        if existing is None:
            raise NotFoundError(f"Conversation {conversation_id} not found")
        if as_utc(existing.last_message_at) > now:
            return {}
        return {"snippet": text, "last_message_at": now, "updated_at": now}

    conversation = store.upsert_with(Conversation, conversation_id, merge)
    _publish_conversation(events, conversation)
    logger.info(
        f"Reply sent as {message.id}",
        extra={"conversation_id": conversation_id, "page_id": conversation.page_id},
    )
    return message
