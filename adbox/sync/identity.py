"""AdBox — Participant Name Repair.

Conversations created before the participant's profile was readable carry a
placeholder name. This pass asks the gateway again and, when a real name
comes back, rewrites the conversation and the participant's messages.
"""

from typing import Any, Dict, List, Optional

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.core.logging import get_logger
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.inbox_models import Conversation, Message
from adbox.store.repository import Store
from adbox.sync.arbitration import PLACEHOLDER_NAMES, is_placeholder_name
from adbox.sync.events import EventRegistry, message_events
from adbox.sync.reconciler import conversation_payload

logger = get_logger("sync.identity")

MAX_REPAIRS_PER_PASS = 20


def _set_name_if_placeholder(name: str):
    """Merge that only replaces a placeholder, so a concurrent real name wins."""

    def merge(existing: Optional[Conversation]) -> Dict[str, Any]:
        if existing is None or is_placeholder_name(existing.participant_name):
            return {"participant_name": name}
        return {}

    return merge


async def repair_placeholder_names(
    store: Store,
    gateway: RemotePlatformGateway,
    page_id: str,
    events: EventRegistry = message_events,
    limit: int = MAX_REPAIRS_PER_PASS,
) -> List[Conversation]:
    """Resolve placeholder participant names for one page."""
    candidates = store.find_where(
        Conversation,
        Conversation.page_id == page_id,
        Conversation.participant_id.is_not(None),  # type: ignore[union-attr]
        Conversation.participant_name.in_(list(PLACEHOLDER_NAMES)),  # type: ignore[attr-defined]
        order_by=Conversation.last_message_at.desc(),  # type: ignore[attr-defined]
        limit=limit,
    )
    repaired: List[Conversation] = []

    for conversation in candidates:
        try:
            name = await gateway.get_user_name(page_id, conversation.participant_id)
            if is_placeholder_name(name):
                continue
            row = store.upsert_with(
                Conversation, conversation.id, _set_name_if_placeholder(name)
            )
            for message in store.find_where(
                Message,
                Message.conversation_id == conversation.id,
                Message.sender_id == conversation.participant_id,
            ):
                if is_placeholder_name(message.sender_name):
                    store.update(Message, message.id, {"sender_name": name})
        except Exception as e:
            logger.warning(
                f"Name repair failed for conversation {conversation.id}: {e}",
                extra={"page_id": page_id, "conversation_id": conversation.id},
            )
            continue

        repaired.append(row)
        events.publish(
            page_id,
            SyncEvent(
                type=EventType.CONVERSATION_UPDATED.value,
                data={"conversation": conversation_payload(row)},
            ),
        )

    if repaired:
        logger.info(
            f"Repaired {len(repaired)} participant names for page {page_id}",
            extra={"page_id": page_id},
        )
    return repaired
