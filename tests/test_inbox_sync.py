"""Page sync, name repair and the per-tenant pipeline."""

from datetime import timedelta

import pytest

from adbox.models.inbox_models import Conversation, Message
from adbox.store.repository import NotFoundError
from adbox.sync.arbitration import UnreadRules
from adbox.sync.identity import repair_placeholder_names
from adbox.sync.inbox_sync import sync_page
from adbox.sync.pipeline import TenantUnavailableError, sync_tenant
from factories import ad_snap, ad_tree, conversation_snap, message_snap, ts

RULES = UnreadRules(clock_skew=timedelta(seconds=5), phantom_window=timedelta(seconds=120))


async def test_sync_page_stores_conversations_and_messages(store, gateway, events, received):
    gateway.conversations["p1"] = [conversation_snap(unread=1, updated=ts(1))]
    gateway.messages["c1"] = [
        message_snap("m1", created=ts(3)),
        message_snap("m2", sender_id="p1", sender_name="Shop", text="hi!", created=ts(2)),
    ]

    result = await sync_page(store, gateway, "p1", RULES, events)

    assert (result.conversations, result.changed_conversations, result.messages) == (1, 1, 2)
    assert [m.id for m in store.find_where(Message, order_by=Message.created_at)] == ["m1", "m2"]
    types = [e.type for e in received["p1"]]
    assert "conversation_updated" in types
    assert "messages_synced" in types
    assert types.count("new_message") == 1


async def test_unchanged_conversation_skips_message_fetch(store, gateway, events):
    gateway.conversations["p1"] = [conversation_snap(updated=ts(1))]
    gateway.messages["c1"] = [message_snap("m1", created=ts(2))]
    await sync_page(store, gateway, "p1", RULES, events)

    # Messages endpoint now fails; an unchanged thread must not call it
    gateway.failing.add("c1")
    result = await sync_page(store, gateway, "p1", RULES, events)

    assert result.failed_conversations == 0
    assert result.messages == 0


async def test_message_fetch_failure_skips_only_that_conversation(store, gateway, events):
    gateway.conversations["p1"] = [
        conversation_snap(id="c1", participant_id="u1", updated=ts(1)),
        conversation_snap(id="c2", participant_id="u2", updated=ts(2)),
    ]
    gateway.messages["c2"] = [message_snap("m9", sender_id="u2", created=ts(3))]
    gateway.failing.add("c1")

    result = await sync_page(store, gateway, "p1", RULES, events)

    assert result.failed_conversations == 1
    assert store.find_by_id(Message, "m9") is not None
    assert store.find_by_id(Conversation, "c1") is not None


async def test_messages_fetched_newest_conversation_first(store, gateway, events, received):
    gateway.conversations["p1"] = [
        conversation_snap(id="old", participant_id="u1", updated=ts(30)),
        conversation_snap(id="new", participant_id="u2", updated=ts(1)),
    ]
    gateway.messages["old"] = [message_snap("m1", sender_id="u1", created=ts(30))]
    gateway.messages["new"] = [message_snap("m2", sender_id="u2", created=ts(1))]

    result = await sync_page(store, gateway, "p1", RULES, events)

    assert gateway.fetched == ["new", "old"]
    assert result.changed_conversations == 2
    updated = [
        e.data["conversation"]["id"]
        for e in received["p1"]
        if e.type == "conversation_updated"
    ]
    assert sorted(updated) == ["new", "old"]

    # Nothing changed and both threads have history: no message fetches
    gateway.fetched.clear()
    result = await sync_page(store, gateway, "p1", RULES, events)
    assert result.changed_conversations == 0
    assert gateway.fetched == []


async def test_listing_failure_propagates(store, gateway, events):
    gateway.failing.add("p1")
    with pytest.raises(Exception):
        await sync_page(store, gateway, "p1", RULES, events)


async def test_placeholder_names_repaired(store, gateway, events, received):
    gateway.conversations["p1"] = [conversation_snap(participant="Facebook User", updated=ts(1))]
    gateway.messages["c1"] = [message_snap("m1", sender_name="Facebook User", created=ts(2))]
    gateway.names["u1"] = "Somchai"

    await sync_page(store, gateway, "p1", RULES, events)

    assert store.find_by_id(Conversation, "c1").participant_name == "Somchai"
    assert store.find_by_id(Message, "m1").sender_name == "Somchai"


async def test_repair_ignores_placeholder_answers(store, gateway, events):
    store.upsert(
        Conversation,
        "c1",
        create={"page_id": "p1", "participant_id": "u1", "participant_name": "Customer"},
        update={},
    )
    gateway.names["u1"] = "Facebook User"

    repaired = await repair_placeholder_names(store, gateway, "p1", events)

    assert repaired == []
    assert store.find_by_id(Conversation, "c1").participant_name == "Customer"


# ── Tenant pipeline ──


def _factory(gateway):
    return lambda tenant, pages: gateway


async def test_sync_tenant_aggregates_pages_and_ads(store, gateway, tenant, events):
    gateway.conversations["p1"] = [conversation_snap(updated=ts(1))]
    gateway.messages["c1"] = [message_snap("m1", created=ts(2))]
    ad_tree(gateway, [ad_snap("a1"), ad_snap("a2")])

    result = await sync_tenant(store, "t1", _factory(gateway), RULES, events, events)

    assert result.conversations_count == 1
    assert result.messages_count == 1
    assert result.ads_count == 2
    assert result.changes_count == 2
    assert gateway.closed == 1


async def test_sync_tenant_survives_partial_failure(store, gateway, tenant, events):
    gateway.failing.add("p1")
    ad_tree(gateway, [ad_snap("a1")])

    result = await sync_tenant(store, "t1", _factory(gateway), RULES, events, events)

    assert result.ads_count == 1
    assert len(result.errors) == 1


async def test_sync_tenant_fails_when_gateway_unavailable(store, gateway, tenant, events):
    gateway.failing.update({"p1", "ad_accounts"})

    with pytest.raises(TenantUnavailableError):
        await sync_tenant(store, "t1", _factory(gateway), RULES, events, events)
    assert gateway.closed == 1


async def test_sync_unknown_tenant(store, gateway, events):
    with pytest.raises(NotFoundError):
        await sync_tenant(store, "nope", _factory(gateway), RULES, events, events)
