"""AdBox — Reconciliation Engine (conversations & messages).

Merges fresh gateway snapshots into the store without regressing locally
known truth. Every merge is computed inside the store's write transaction
from the row as it exists at that moment, so concurrent pollers and local
read/unread actions never lose each other's updates.

Failures are per record: a bad conversation or message is logged and
skipped, and the successful subset is returned.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Set, Tuple

from adbox.config import settings
from adbox.core.clock import as_utc, utcnow
from adbox.core.logging import get_logger
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.inbox_models import Conversation, Message
from adbox.models.snapshot_models import ConversationSnapshot, MessageSnapshot
from adbox.store.repository import Store
from adbox.sync.arbitration import (
    UnreadRules,
    arbitrate_unread,
    normalize_message_content,
    resolve_ad_id,
    resolve_participant,
    resolve_participant_name,
)
from adbox.sync.events import EventRegistry, message_events

logger = get_logger("sync.reconciler")

LOCAL_ID_PREFIX = "local-"

# Fields whose change is worth telling viewers about
WATCHED_CONVERSATION_FIELDS = (
    "snippet",
    "unread_count",
    "participant_name",
    "last_message_at",
    "ad_id",
)


def conversation_payload(conversation: Conversation) -> Dict[str, Any]:
    return conversation.model_dump(mode="json")


def message_payload(message: Message, page_id: Optional[str] = None) -> Dict[str, Any]:
    payload = message.model_dump(mode="json")
    if page_id is not None:
        payload["page_id"] = page_id
    return payload


def is_local_id(message_id: str) -> bool:
    return message_id.startswith(LOCAL_ID_PREFIX)


# ─────────────────────────────────────────────
# CONVERSATIONS
# ─────────────────────────────────────────────


def _merge_conversation(
    page_id: str,
    snap: ConversationSnapshot,
    existing: Optional[Conversation],
    rules: UnreadRules,
    now: datetime,
) -> Dict[str, Any]:
    participant = resolve_participant(snap.participants, page_id)
    fresh_updated = as_utc(snap.updated_time) or (
        as_utc(existing.last_message_at) if existing else None
    ) or now
    fresh_snippet = snap.snippet or (existing.snippet if existing else "")

    fields: Dict[str, Any] = {
        "page_id": page_id,
        "participant_id": (
            participant.id if participant else (existing.participant_id if existing else None)
        ),
        "participant_name": resolve_participant_name(
            participant.name if participant else None,
            existing.participant_name if existing else None,
        ),
        "ad_id": resolve_ad_id(snap.ad_id, existing.ad_id if existing else None),
        "facebook_link": snap.link or (existing.facebook_link if existing else None),
        "updated_at": now,
    }

    stored_at = as_utc(existing.last_message_at) if existing else None
    if stored_at is not None and fresh_updated < stored_at - rules.clock_skew:
        # Stale snapshot (a webhook or another poller already saw newer
        # activity): identity may still improve, activity fields stay put.
        return fields

    # Within skew it is the same activity; Graph times are whole seconds
    # while webhook timestamps carry milliseconds.
    fields["last_message_at"] = max(fresh_updated, stored_at) if stored_at else fresh_updated
    fields["snippet"] = fresh_snippet
    fields["unread_count"] = arbitrate_unread(
        existing, snap.unread_count, fresh_updated, fresh_snippet, rules
    )
    return fields


def _changed(before: Optional[Dict[str, Any]], after: Conversation) -> bool:
    if before is None:
        return True
    for field in WATCHED_CONVERSATION_FIELDS:
        old, new = before.get(field), getattr(after, field)
        if isinstance(old, datetime) or isinstance(new, datetime):
            old, new = as_utc(old), as_utc(new)
        if old != new:
            return True
    return False


def reconcile_conversation(
    store: Store,
    page_id: str,
    snap: ConversationSnapshot,
    rules: Optional[UnreadRules] = None,
) -> Tuple[Conversation, bool]:
    """Upsert one conversation; returns ``(row, changed)``."""
    rules = rules or UnreadRules.from_settings()
    now = utcnow()
    before: Dict[str, Optional[Dict[str, Any]]] = {"row": None}

    def merge(existing: Optional[Conversation]) -> Dict[str, Any]:
        before["row"] = (
            {f: getattr(existing, f) for f in WATCHED_CONVERSATION_FIELDS}
            if existing is not None
            else None
        )
        return _merge_conversation(page_id, snap, existing, rules, now)

    row = store.upsert_with(Conversation, snap.id, merge)
    return row, _changed(before["row"], row)


def reconcile_conversations(
    store: Store,
    page_id: str,
    fresh: List[ConversationSnapshot],
    rules: Optional[UnreadRules] = None,
    events: EventRegistry = message_events,
    changed_ids: Optional[Set[str]] = None,
) -> List[Conversation]:
    """Merge a page's conversation snapshot; newest activity first.

    Ids of rows whose watched fields changed are added to ``changed_ids``
    when a set is given.
    """
    rules = rules or UnreadRules.from_settings()
    merged: List[Conversation] = []

    for snap in fresh:
        try:
            row, changed = reconcile_conversation(store, page_id, snap, rules)
        except Exception as e:
            logger.error(
                f"Failed to reconcile conversation {snap.id}: {e}",
                extra={"page_id": page_id, "conversation_id": snap.id},
            )
            continue
        merged.append(row)
        if changed:
            if changed_ids is not None:
                changed_ids.add(row.id)
            events.publish(
                page_id,
                SyncEvent(
                    type=EventType.CONVERSATION_UPDATED.value,
                    data={"conversation": conversation_payload(row)},
                ),
            )

    merged.sort(key=lambda c: as_utc(c.last_message_at), reverse=True)
    logger.info(
        f"Reconciled {len(merged)}/{len(fresh)} conversations for page {page_id}",
        extra={"page_id": page_id},
    )
    return merged


# ─────────────────────────────────────────────
# MESSAGES
# ─────────────────────────────────────────────


def find_pending_match(
    store: Store,
    conversation_id: str,
    sender_id: str,
    content: Optional[str],
    created_at: datetime,
    window: timedelta,
) -> Optional[Message]:
    """Oldest pending local message with the same sender and text near ``created_at``.

    Two identical replies sent within ``window`` of each other cannot be told
    apart; the oldest pending one is confirmed first.
    """
    candidates = store.find_where(
        Message,
        Message.conversation_id == conversation_id,
        Message.is_pending == True,  # noqa: E712
        order_by=Message.created_at,
    )
    created_at = as_utc(created_at)
    for message in candidates:
        if message.sender_id != sender_id or (message.content or "") != (content or ""):
            continue
        if abs(as_utc(message.created_at) - created_at) <= window:
            return message
    return None


def confirm_pending_message(
    store: Store,
    temp_id: str,
    platform_id: str,
    created_at: Optional[datetime] = None,
) -> Message:
    """Swap a pending local message's temporary id for the platform id.

    If a poll already stored ``platform_id``, that row survives and the
    temporary one disappears; ``created_at`` and ``conversation_id`` of an
    existing platform row are never changed.
    """

    def merge(local: Message, remote: Optional[Message]) -> Dict[str, Any]:
        if remote is not None:
            return {
                "content": remote.content or local.content,
                "attachments": remote.attachments or local.attachments,
                "sticker_url": remote.sticker_url or local.sticker_url,
                "is_pending": False,
            }
        return {
            "conversation_id": local.conversation_id,
            "sender_id": local.sender_id,
            "sender_name": local.sender_name,
            "content": local.content,
            "attachments": local.attachments,
            "sticker_url": local.sticker_url,
            "created_at": created_at or local.created_at,
            "is_from_page": local.is_from_page,
            "is_pending": False,
        }

    return store.replace(Message, temp_id, platform_id, merge)


def reconcile_message(
    store: Store,
    conversation_id: str,
    page_id: str,
    snap: MessageSnapshot,
    match_window: Optional[timedelta] = None,
) -> Tuple[Message, bool]:
    """Upsert one message; returns ``(row, created)``."""
    match_window = match_window or timedelta(
        seconds=settings.pending_match_window_seconds
    )
    content, attachments_json, sticker_url = normalize_message_content(
        snap.text, snap.attachments, snap.sticker
    )
    is_from_page = bool(snap.sender_id) and snap.sender_id == page_id
    created_at = as_utc(snap.created_time) or utcnow()

    if is_from_page and store.find_by_id(Message, snap.id) is None:
        pending = find_pending_match(
            store, conversation_id, snap.sender_id, content, created_at, match_window
        )
        if pending is not None:
            logger.info(
                f"Confirmed pending message {pending.id} as {snap.id}",
                extra={"conversation_id": conversation_id},
            )
            return confirm_pending_message(store, pending.id, snap.id, created_at), False

    created = {"value": False}

    def merge(existing: Optional[Message]) -> Dict[str, Any]:
        if existing is None:
            created["value"] = True
            return {
                "conversation_id": conversation_id,
                "sender_id": snap.sender_id or "unknown",
                "sender_name": snap.sender_name or ("Page" if is_from_page else "Unknown"),
                "content": content,
                "attachments": attachments_json,
                "sticker_url": sticker_url,
                "created_at": created_at,
                "is_from_page": is_from_page,
                "is_pending": False,
            }
        # created_at / conversation_id are immutable once set
        return {
            "content": content if content is not None else existing.content,
            "attachments": attachments_json or existing.attachments,
            "sticker_url": sticker_url or existing.sticker_url,
            "is_from_page": is_from_page if snap.sender_id else existing.is_from_page,
            "is_pending": False,
        }

    row = store.upsert_with(Message, snap.id, merge)
    return row, created["value"]


def reconcile_messages(
    store: Store,
    conversation_id: str,
    page_id: str,
    fresh: List[MessageSnapshot],
    events: EventRegistry = message_events,
    match_window: Optional[timedelta] = None,
) -> List[Message]:
    """Merge a conversation's message snapshot; oldest first."""
    merged: List[Message] = []

    for snap in fresh:
        try:
            row, created = reconcile_message(
                store, conversation_id, page_id, snap, match_window
            )
        except Exception as e:
            logger.error(
                f"Failed to reconcile message {snap.id}: {e}",
                extra={"conversation_id": conversation_id, "page_id": page_id},
            )
            continue
        merged.append(row)
        if created and not row.is_from_page:
            events.publish(
                page_id,
                SyncEvent(
                    type=EventType.NEW_MESSAGE.value,
                    data={"message": message_payload(row, page_id)},
                ),
            )

    merged.sort(key=lambda m: as_utc(m.created_at))
    logger.debug(
        f"Reconciled {len(merged)}/{len(fresh)} messages",
        extra={"conversation_id": conversation_id},
    )
    return merged
