"""AdBox — Page Inbox Sync.

One pass over a page: reconcile the conversation list, pull messages for
conversations with new activity, then repair placeholder names.
"""

from dataclasses import dataclass
from typing import Optional, Set

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.core.logging import get_logger
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.inbox_models import Message
from adbox.store.repository import Store
from adbox.sync.arbitration import UnreadRules
from adbox.sync.events import EventRegistry, message_events
from adbox.sync.identity import repair_placeholder_names
from adbox.sync.reconciler import reconcile_conversations, reconcile_messages

logger = get_logger("sync.inbox")


@dataclass
class PageSyncResult:
    page_id: str
    conversations: int = 0
    changed_conversations: int = 0
    messages: int = 0
    failed_conversations: int = 0


async def sync_page(
    store: Store,
    gateway: RemotePlatformGateway,
    page_id: str,
    rules: Optional[UnreadRules] = None,
    events: EventRegistry = message_events,
) -> PageSyncResult:
    """Sync one page; a failure listing conversations propagates."""
    result = PageSyncResult(page_id=page_id)
    fresh = await gateway.list_conversations(page_id)

    changed_ids: Set[str] = set()
    conversations = reconcile_conversations(
        store, page_id, fresh, rules, events, changed_ids
    )
    result.conversations = len(conversations)
    result.changed_conversations = len(changed_ids)
    result.failed_conversations = len(fresh) - len(conversations)

    for conversation in conversations:
        if conversation.id not in changed_ids and store.find_where(
            Message, Message.conversation_id == conversation.id, limit=1
        ):
            # No new activity and history already stored
            continue

        try:
            messages = await gateway.list_messages(conversation.id, page_id)
        except Exception as e:
            logger.warning(
                f"Skipping messages of {conversation.id} this cycle: {e}",
                extra={"page_id": page_id, "conversation_id": conversation.id},
            )
            result.failed_conversations += 1
            continue
        stored = reconcile_messages(store, conversation.id, page_id, messages, events)
        result.messages += len(stored)
        if stored:
            events.publish(
                page_id,
                SyncEvent(
                    type=EventType.MESSAGES_SYNCED.value,
                    data={"conversation_id": conversation.id, "count": len(stored)},
                ),
            )

    await repair_placeholder_names(store, gateway, page_id, events)

    logger.info(
        f"Page {page_id}: {result.conversations} conversations "
        f"({result.changed_conversations} changed), {result.messages} messages",
        extra={"page_id": page_id},
    )
    return result
