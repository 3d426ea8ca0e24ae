"""Webhook ingestion: signatures, messaging events, ad account relays."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone

import pytest

from adbox.core.clock import as_utc
from adbox.models.ads_models import AdAccount
from adbox.models.inbox_models import Conversation, Message
from adbox.sync.arbitration import UnreadRules
from adbox.sync.reconciler import reconcile_conversation
from adbox.sync.webhook import (
    UnsupportedWebhookObject,
    handle_payload,
    verify_signature,
)
from factories import conversation_snap

SECRET = "app-secret"
RULES = UnreadRules(clock_skew=timedelta(seconds=5), phantom_window=timedelta(seconds=120))


def sign(body: bytes) -> str:
    return "sha256=" + hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()


def messaging_payload(mid="mid.1", sender="u1", recipient="p1", text="hi", **message):
    return {
        "object": "page",
        "entry": [
            {
                "id": "p1",
                "time": 1700000000000,
                "messaging": [
                    {
                        "sender": {"id": sender},
                        "recipient": {"id": recipient},
                        "timestamp": 1700000000000,
                        "message": {"mid": mid, "text": text, **message},
                    }
                ],
            }
        ],
    }


def test_signature_roundtrip():
    body = b'{"object":"page"}'
    assert verify_signature(SECRET, body, sign(body)) is True
    assert verify_signature(SECRET, body, sign(b"tampered")) is False
    assert verify_signature(SECRET, body, None) is False


async def test_participant_message_creates_composite_conversation(store, events, received):
    handled = await handle_payload(store, messaging_payload(), inbox_events=events)

    assert handled == 1
    conversation = store.find_by_id(Conversation, "p1_u1")
    assert conversation.unread_count == 1
    assert conversation.snippet == "hi"
    assert store.find_by_id(Message, "mid.1").conversation_id == "p1_u1"
    [event] = received["p1"]
    assert event.type == "new_message"
    assert event.data["conversation"]["id"] == "p1_u1"


async def test_existing_conversation_found_by_participant(store, events):
    store.upsert(
        Conversation,
        "t_real",
        create={"page_id": "p1", "participant_id": "u1", "participant_name": "Somchai"},
        update={},
    )

    await handle_payload(store, messaging_payload(), inbox_events=events)

    assert store.find_by_id(Conversation, "p1_u1") is None
    row = store.find_by_id(Conversation, "t_real")
    assert row.unread_count == 1
    assert row.participant_name == "Somchai"


async def test_poll_of_same_activity_applies_gateway_unread(store, events):
    payload = messaging_payload()
    payload["entry"][0]["messaging"][0]["timestamp"] = 1715000000734
    await handle_payload(store, payload, inbox_events=events)
    assert store.find_by_id(Conversation, "p1_u1").unread_count == 1

    # Graph reports the same activity in whole seconds, already read on Facebook
    polled_at = datetime(2024, 5, 6, 12, 53, 20, tzinfo=timezone.utc)
    row, _ = reconcile_conversation(
        store, "p1", conversation_snap(id="p1_u1", unread=0, updated=polled_at), RULES
    )

    assert row.unread_count == 0
    assert as_utc(row.last_message_at) > polled_at


async def test_genuinely_older_poll_keeps_webhook_unread(store, events):
    payload = messaging_payload()
    payload["entry"][0]["messaging"][0]["timestamp"] = 1715000000734
    await handle_payload(store, payload, inbox_events=events)

    before_message = datetime(2024, 5, 6, 12, 50, 0, tzinfo=timezone.utc)
    row, _ = reconcile_conversation(
        store, "p1", conversation_snap(id="p1_u1", unread=0, updated=before_message), RULES
    )

    assert row.unread_count == 1


async def test_redelivery_is_ignored(store, events):
    payload = messaging_payload()
    await handle_payload(store, payload, inbox_events=events)
    handled = await handle_payload(store, payload, inbox_events=events)

    assert handled == 0
    assert store.find_by_id(Conversation, "p1_u1").unread_count == 1


async def test_page_echo_does_not_increment_unread(store, events):
    await handle_payload(store, messaging_payload(), inbox_events=events)
    await handle_payload(
        store,
        messaging_payload(mid="mid.2", sender="p1", recipient="u1", text="hello back"),
        inbox_events=events,
    )

    row = store.find_by_id(Conversation, "p1_u1")
    assert row.unread_count == 1
    assert store.find_by_id(Message, "mid.2").is_from_page is True


async def test_referral_ad_and_attachment_label(store, events):
    payload = messaging_payload(
        text=None,
        attachments=[{"type": "image", "payload": {"url": "https://cdn/img.jpg"}}],
        referral={"ad_id": "ad_42", "source": "ADS"},
    )

    await handle_payload(store, payload, inbox_events=events)

    row = store.find_by_id(Conversation, "p1_u1")
    assert row.ad_id == "ad_42"
    assert row.snippet == "[Image]"
    assert store.find_by_id(Message, "mid.1").content == "[Image]"


async def test_name_lookup_fills_placeholder(store, events):
    async def lookup(page_id, user_id):
        return "Ann"

    await handle_payload(store, messaging_payload(), lookup, inbox_events=events)

    assert store.find_by_id(Conversation, "p1_u1").participant_name == "Ann"
    assert store.find_by_id(Message, "mid.1").sender_name == "Ann"


async def test_ad_account_change_relayed_to_tenant(store, events, received):
    store.add(AdAccount(id="act_123", tenant_id="t1", account_id="123", name="Main"))
    payload = {
        "object": "ad_account",
        "entry": [
            {
                "id": "123",
                "changes": [
                    {
                        "field": "ads",
                        "value": {"ad_id": "a1", "ad_name": "Promo", "status": "PAUSED"},
                    },
                    {"field": "unknown_field", "value": {}},
                ],
            }
        ],
    }

    handled = await handle_payload(store, payload, ads_events=events)

    assert handled == 1
    [event] = received["t1"]
    assert event.type == "ad_updated"
    assert event.data["id"] == "a1"
    assert event.data["ad_account_id"] == "act_123"


async def test_unknown_object_rejected(store):
    with pytest.raises(UnsupportedWebhookObject):
        await handle_payload(store, {"object": "instagram", "entry": []})
