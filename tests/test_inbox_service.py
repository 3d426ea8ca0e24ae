"""Viewer-facing inbox operations."""

import pytest

from adbox.core.clock import as_utc
from adbox.models.inbox_models import Conversation, Message
from adbox.models.snapshot_models import SendResult
from adbox.connectors.meta.client import MetaAPIError
from adbox.services import inbox_service
from adbox.store.repository import NotFoundError
from adbox.sync.arbitration import UnreadRules
from adbox.sync.reconciler import reconcile_conversation, reconcile_message
from factories import conversation_snap, message_snap, ts


@pytest.fixture
def conversation(store):
    row, _ = reconcile_conversation(
        store, "p1", conversation_snap(unread=3, updated=ts(10)), UnreadRules()
    )
    return row


def test_get_conversations_newest_first(store):
    for page_id, snap in [
        ("p1", conversation_snap(id="a", updated=ts(20))),
        ("p1", conversation_snap(id="b", participant_id="u2", updated=ts(1))),
        ("p2", conversation_snap(id="c", page_id="p2", updated=ts(0))),
    ]:
        reconcile_conversation(store, page_id, snap)

    rows = inbox_service.get_conversations(store, ["p1"])

    assert [c.id for c in rows] == ["b", "a"]


def test_get_messages_ascending(store, conversation):
    reconcile_message(store, "c1", "p1", message_snap("late", created=ts(1)))
    reconcile_message(store, "c1", "p1", message_snap("early", created=ts(9)))

    assert [m.id for m in inbox_service.get_messages(store, "c1")] == ["early", "late"]


def test_get_messages_unknown_conversation(store):
    with pytest.raises(NotFoundError):
        inbox_service.get_messages(store, "nope")


def test_mark_read_then_poll_keeps_zero(store, conversation, events, received):
    read = inbox_service.mark_read(store, "c1", events)
    assert read.unread_count == 0

    row, _ = reconcile_conversation(
        store, "p1", conversation_snap(unread=3, updated=ts(10)), UnreadRules()
    )
    assert row.unread_count == 0
    assert received["p1"][0].type == "conversation_updated"


def test_mark_unread(store, conversation, events):
    inbox_service.mark_read(store, "c1", events)
    row = inbox_service.mark_unread(store, "c1", events)

    assert row.unread_count == 1
    assert row.last_read_at is None


def test_mark_read_unknown(store, events):
    with pytest.raises(NotFoundError):
        inbox_service.mark_read(store, "ghost", events)
    with pytest.raises(NotFoundError):
        inbox_service.mark_unread(store, "ghost", events)


async def test_send_reply_confirms_platform_id(store, gateway, conversation, events):
    gateway.send_result = SendResult(message_id="m_sent", recipient_id="u1")

    message = await inbox_service.send_reply(store, gateway, "c1", "  thanks!  ", events)

    assert message.id == "m_sent"
    assert message.is_pending is False
    assert gateway.sent == [("p1", "u1", "thanks!")]
    assert not [m for m in store.find_where(Message) if m.id.startswith("local-")]
    row = store.find_by_id(Conversation, "c1")
    assert row.snippet == "thanks!"
    assert as_utc(row.last_message_at) >= as_utc(conversation.last_message_at)


async def test_send_reply_without_id_stays_pending(store, gateway, conversation, events):
    gateway.send_result = SendResult()

    message = await inbox_service.send_reply(store, gateway, "c1", "ok", events)

    assert message.id.startswith("local-")
    assert message.is_pending is True


async def test_failed_send_removes_pending_row(store, gateway, conversation, events):
    gateway.failing.add("send")

    with pytest.raises(MetaAPIError):
        await inbox_service.send_reply(store, gateway, "c1", "hello", events)

    assert store.find_where(Message) == []


async def test_send_reply_rejects_empty_text(store, gateway, conversation, events):
    with pytest.raises(inbox_service.ReplyError):
        await inbox_service.send_reply(store, gateway, "c1", "   ", events)


def test_new_messages_since_excludes_seen_and_page_messages(store, conversation):
    reconcile_message(store, "c1", "p1", message_snap("m1", created=ts(3)))
    reconcile_message(store, "c1", "p1", message_snap("m2", created=ts(2)))
    reconcile_message(store, "c1", "p1", message_snap("m3", sender_id="p1", created=ts(1)))

    messages = inbox_service.new_messages_since(store, ["p1"], exclude_ids=["m1"])

    assert [m["id"] for m in messages] == ["m2"]
    assert messages[0]["page_id"] == "p1"


def test_new_messages_since_timestamp(store, conversation):
    reconcile_message(store, "c1", "p1", message_snap("old", created=ts(30)))
    reconcile_message(store, "c1", "p1", message_snap("new", created=ts(1)))

    messages = inbox_service.new_messages_since(store, ["p1"], since=ts(5))

    assert [m["id"] for m in messages] == ["new"]
