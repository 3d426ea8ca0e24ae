"""Ad tree sync: upserts, change events, deleted flagging, aggregates."""

import pytest

from adbox.models.ads_models import AdAccount, AdSet, Campaign, FacebookAd
from adbox.sync.ads_sync import sync_ad_account
from factories import ad_snap, ad_tree


async def test_first_sync_creates_tree_and_reports_created(store, gateway, events, received):
    account = ad_tree(gateway, [ad_snap("a1", spend=10), ad_snap("a2", status="PAUSED")])

    result = await sync_ad_account(store, gateway, "t1", account, events)

    assert result.campaigns_count == 1
    assert result.ad_sets_count == 1
    assert result.ads_count == 2
    assert [c.action.value for c in result.changes] == ["created", "created"]
    assert store.find_by_id(Campaign, "cp1").ad_account_id == "act_1"
    assert store.find_by_id(AdSet, "as1").campaign_id == "cp1"
    assert [e.type for e in received["t1"]] == ["ad_created", "ad_created"]
    assert received["t1"][0].data["ad_account_name"] == "Main"


async def test_second_sync_reports_status_and_metric_changes(store, gateway, events, received):
    account = ad_tree(gateway, [ad_snap("a1", spend=10), ad_snap("a2")])
    await sync_ad_account(store, gateway, "t1", account, events)
    received.clear()

    gateway.ads["act_1"] = [ad_snap("a1", spend=25), ad_snap("a2", status="PAUSED")]
    result = await sync_ad_account(store, gateway, "t1", account, events)

    assert [(c.action.value, c.id) for c in result.changes] == [
        ("status_changed", "a2"),
        ("updated", "a1"),
    ]
    assert store.find_by_id(FacebookAd, "a1").spend == 25
    assert [e.type for e in received["t1"]] == ["ad_status_changed", "ad_updated"]


async def test_vanished_ad_flagged_deleted_once(store, gateway, events):
    account = ad_tree(gateway, [ad_snap("a1"), ad_snap("a2")])
    await sync_ad_account(store, gateway, "t1", account, events)

    gateway.ads["act_1"] = [ad_snap("a1")]
    second = await sync_ad_account(store, gateway, "t1", account, events)
    third = await sync_ad_account(store, gateway, "t1", account, events)

    assert [(c.action.value, c.id) for c in second.changes] == [("deleted", "a2")]
    assert third.changes == []
    assert store.find_by_id(FacebookAd, "a2").effective_status == "DELETED"


async def test_reappearing_ad_reported_as_created(store, gateway, events):
    account = ad_tree(gateway, [ad_snap("a1")])
    await sync_ad_account(store, gateway, "t1", account, events)
    gateway.ads["act_1"] = []
    await sync_ad_account(store, gateway, "t1", account, events)

    gateway.ads["act_1"] = [ad_snap("a1")]
    result = await sync_ad_account(store, gateway, "t1", account, events)

    assert [c.action.value for c in result.changes] == ["created"]
    assert store.find_by_id(FacebookAd, "a1").effective_status == "ACTIVE"


async def test_ads_of_unknown_ad_set_are_skipped(store, gateway, events):
    account = ad_tree(gateway, [ad_snap("a1"), ad_snap("orphan", ad_set_id="missing")])

    result = await sync_ad_account(store, gateway, "t1", account, events)

    assert result.ads_count == 1
    assert store.find_by_id(FacebookAd, "orphan") is None


async def test_account_aggregates(store, gateway, events):
    account = ad_tree(
        gateway, [ad_snap("a1"), ad_snap("a2"), ad_snap("a3", status="PAUSED")]
    )

    await sync_ad_account(store, gateway, "t1", account, events)

    row = store.find_by_id(AdAccount, "act_1")
    assert row.tenant_id == "t1"
    assert (row.total_ads, row.active_ads, row.paused_ads) == (3, 2, 1)
    assert row.total_spend == 100.0
    assert row.total_clicks == 50
    assert row.last_sync_at is not None


async def test_gateway_failure_propagates(store, gateway, events):
    account = ad_tree(gateway, [ad_snap("a1")])
    gateway.failing.add("act_1")

    with pytest.raises(Exception):
        await sync_ad_account(store, gateway, "t1", account, events)
