"""AdBox — Webhook Ingestion.

Push path alongside polling. Page ``messaging`` events are merged with the
same rules as a poll (placeholder-name protection, ad referral, pending
reply confirmation); ``ad_account`` changes are relayed to viewers so they
refresh before the next ad sync.
"""

import hashlib
import hmac
from typing import Any, Awaitable, Callable, Dict, Optional

from adbox.core.clock import as_utc, parse_timestamp, utcnow
from adbox.core.logging import get_logger
from adbox.models.ads_models import AdAccount
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.inbox_models import Conversation, Message
from adbox.models.snapshot_models import AttachmentSnapshot, MessageSnapshot
from adbox.store.repository import Store
from adbox.sync.arbitration import (
    DEFAULT_PARTICIPANT_NAME,
    is_placeholder_name,
    normalize_message_content,
    resolve_ad_id,
    resolve_participant_name,
)
from adbox.sync.events import EventRegistry, ad_events, message_events
from adbox.sync.reconciler import conversation_payload, message_payload, reconcile_message

logger = get_logger("sync.webhook")

NameLookup = Callable[[str, str], Awaitable[Optional[str]]]

# ad_account change field → event type relayed to viewers
AD_CHANGE_EVENTS = {
    "ads": ("ad_updated", "ad_id", "ad_name"),
    "campaigns": ("campaign_updated", "campaign_id", "campaign_name"),
    "adsets": ("adset_updated", "adset_id", "adset_name"),
    "ad_creative": ("creative_updated", None, None),
}


class UnsupportedWebhookObject(ValueError):
    """Payload ``object`` is neither ``page`` nor ``ad_account``."""


def verify_signature(app_secret: str, body: bytes, header: Optional[str]) -> bool:
    """Check ``X-Hub-Signature-256`` (``sha256=<hex hmac of raw body>``)."""
    if not header:
        return False
    expected = "sha256=" + hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(header, expected)


# ─────────────────────────────────────────────
# MESSAGING
# ─────────────────────────────────────────────


def _attachments(message: Dict[str, Any]):
    attachments = []
    for raw in message.get("attachments") or []:
        payload = raw.get("payload") or {}
        attachments.append(
            AttachmentSnapshot(
                type=raw.get("type") or "file",
                url=payload.get("url"),
                sticker_id=str(payload["sticker_id"]) if payload.get("sticker_id") else None,
            )
        )
    return attachments


async def handle_messaging_event(
    store: Store,
    page_id: str,
    event: Dict[str, Any],
    name_lookup: Optional[NameLookup] = None,
    events: EventRegistry = message_events,
) -> Optional[Message]:
    """Merge one ``messaging`` event; returns the stored message or None if skipped."""
    message = event.get("message") or {}
    mid = message.get("mid")
    sender_id = (event.get("sender") or {}).get("id")
    recipient_id = (event.get("recipient") or {}).get("id")
    if not mid or not sender_id:
        return None
    if store.find_by_id(Message, mid) is not None:
        logger.debug(f"Duplicate delivery of {mid}", extra={"page_id": page_id})
        return None

    is_from_page = sender_id == page_id
    participant_id = recipient_id if is_from_page else sender_id
    created_at = parse_timestamp(event.get("timestamp")) or utcnow()
    referral = event.get("referral") or message.get("referral") or {}
    ad_id = referral.get("ad_id")
    attachments = _attachments(message)
    content, _, _ = normalize_message_content(message.get("text"), attachments)

    existing = store.find_where(
        Conversation,
        Conversation.page_id == page_id,
        Conversation.participant_id == participant_id,
        order_by=Conversation.last_message_at.desc(),  # type: ignore[attr-defined]
        limit=1,
    )
    conversation_id = existing[0].id if existing else f"{page_id}_{participant_id}"

    participant_name = existing[0].participant_name if existing else DEFAULT_PARTICIPANT_NAME
    if not is_from_page and is_placeholder_name(participant_name) and name_lookup:
        try:
            participant_name = await name_lookup(page_id, participant_id) or participant_name
        except Exception as e:
            logger.warning(f"Name lookup for {participant_id} failed: {e}", extra={"page_id": page_id})

    def merge(row: Optional[Conversation]) -> Dict[str, Any]:
        if row is None:
            return {
                "page_id": page_id,
                "participant_id": participant_id,
                "participant_name": resolve_participant_name(participant_name, None),
                "last_message_at": created_at,
                "snippet": content or "",
                "unread_count": 0 if is_from_page else 1,
                "ad_id": ad_id,
            }
        fields: Dict[str, Any] = {
            "participant_name": resolve_participant_name(participant_name, row.participant_name),
            "ad_id": resolve_ad_id(ad_id, row.ad_id),
            "updated_at": utcnow(),
        }
        if created_at >= as_utc(row.last_message_at):
            fields["last_message_at"] = created_at
            fields["snippet"] = content or row.snippet
        if not is_from_page:
            fields["unread_count"] = row.unread_count + 1
        return fields

    conversation = store.upsert_with(Conversation, conversation_id, merge)
    stored, _ = reconcile_message(
        store,
        conversation_id,
        page_id,
        MessageSnapshot(
            id=mid,
            sender_id=sender_id,
            sender_name="Page" if is_from_page else conversation.participant_name,
            text=message.get("text"),
            attachments=attachments,
            created_time=created_at,
        ),
    )

    events.publish(
        page_id,
        SyncEvent(
            type=EventType.NEW_MESSAGE.value,
            data={
                "message": message_payload(stored, page_id),
                "conversation": conversation_payload(conversation),
            },
        ),
    )
    logger.info(
        f"Webhook message {mid} stored",
        extra={"page_id": page_id, "conversation_id": conversation_id},
    )
    return stored


# ─────────────────────────────────────────────
# AD ACCOUNT CHANGES
# ─────────────────────────────────────────────


def handle_ad_account_entry(
    store: Store, entry: Dict[str, Any], events: EventRegistry = ad_events
) -> int:
    """Relay an ``ad_account`` entry's changes to the owning tenant's viewers."""
    raw_id = str(entry.get("id") or "")
    account_id = raw_id[4:] if raw_id.startswith("act_") else raw_id
    accounts = store.find_where(
        AdAccount,
        (AdAccount.account_id == account_id) | (AdAccount.id == f"act_{account_id}"),
        limit=1,
    )
    if not accounts:
        logger.warning(f"Webhook for unknown ad account {raw_id}")
        return 0
    account = accounts[0]

    relayed = 0
    for change in entry.get("changes") or []:
        field = change.get("field")
        value = change.get("value") or {}
        if field not in AD_CHANGE_EVENTS:
            logger.info(f"Unhandled ad account field: {field}")
            continue
        event_type, id_key, name_key = AD_CHANGE_EVENTS[field]
        data: Dict[str, Any] = {"ad_account_id": account.id, "ad_account_name": account.name}
        if id_key:
            data.update(
                {
                    "id": value.get(id_key),
                    "name": value.get(name_key),
                    "status": value.get("status"),
                    "effective_status": value.get("effective_status"),
                }
            )
        else:
            data.update(value)
        events.publish(account.tenant_id, SyncEvent(type=event_type, data=data))
        relayed += 1
    return relayed


async def handle_payload(
    store: Store,
    payload: Dict[str, Any],
    name_lookup: Optional[NameLookup] = None,
    inbox_events: EventRegistry = message_events,
    ads_events: EventRegistry = ad_events,
) -> int:
    """Dispatch a verified webhook body; returns the number of events handled.

    One bad event is logged and skipped; an unknown ``object`` raises
    ``UnsupportedWebhookObject``.
    """
    kind = payload.get("object")
    handled = 0

    if kind == "page":
        for entry in payload.get("entry") or []:
            page_id = str(entry.get("id") or "")
            for event in entry.get("messaging") or []:
                if not event.get("message"):
                    continue
                try:
                    if await handle_messaging_event(
                        store, page_id, event, name_lookup, inbox_events
                    ):
                        handled += 1
                except Exception as e:
                    logger.error(f"Failed to store webhook message: {e}", extra={"page_id": page_id})
        return handled

    if kind == "ad_account":
        for entry in payload.get("entry") or []:
            try:
                handled += handle_ad_account_entry(store, entry, ads_events)
            except Exception as e:
                logger.error(f"Failed to relay ad account change: {e}")
        return handled

    raise UnsupportedWebhookObject(f"Unsupported webhook object: {kind}")
