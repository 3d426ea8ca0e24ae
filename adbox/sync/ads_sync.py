"""AdBox — Ad Tree Sync.

Walks one ad account top-down (account → campaigns → ad sets → ads),
upserting every level before descending, diffs the ads against what the
store held before this cycle and fans the changes out to viewers.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Set

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.core.clock import utcnow
from adbox.core.logging import get_logger
from adbox.core.metric_registry import AD_METRICS, ENTITY_METRICS
from adbox.models.ads_models import AdAccount, AdSet, Campaign, FacebookAd
from adbox.models.event_models import AdChange, ChangeAction, SyncEvent
from adbox.models.snapshot_models import AdAccountSnapshot, AdSetSnapshot, AdSnapshot
from adbox.store.repository import Store
from adbox.sync.change_detector import detect_ad_changes
from adbox.sync.events import EventRegistry, ad_events

logger = get_logger("sync.ads")

DELETED_STATUS = "DELETED"


@dataclass
class AdSyncResult:
    ad_account_id: str
    campaigns_count: int = 0
    ad_sets_count: int = 0
    ads_count: int = 0
    changes: List[AdChange] = field(default_factory=list)


def _metrics(snap: Any, names) -> Dict[str, Any]:
    return {name: getattr(snap, name) for name in names}


def _upsert_account(store: Store, tenant_id: str, snap: AdAccountSnapshot) -> AdAccount:
    fields = {
        "tenant_id": tenant_id,
        "account_id": snap.account_id,
        "name": snap.name,
        "currency": snap.currency or "THB",
        "account_status": snap.account_status or 1,
        "timezone": snap.timezone_name,
        "timezone_offset": snap.timezone_offset_hours_utc or 0,
    }
    return store.upsert(AdAccount, snap.id, create=fields, update=fields)


def _ad_set_fields(account_id: str, snap: AdSetSnapshot) -> Dict[str, Any]:
    return {
        "campaign_id": snap.campaign_id,
        "ad_account_id": account_id,
        "name": snap.name,
        "status": snap.status or "UNKNOWN",
        "effective_status": snap.effective_status or "UNKNOWN",
        "daily_budget": snap.daily_budget,
        "lifetime_budget": snap.lifetime_budget,
        "budget_remaining": snap.budget_remaining,
        "optimization_goal": snap.optimization_goal,
        "billing_event": snap.billing_event,
        "updated_at": utcnow(),
        **_metrics(snap, ENTITY_METRICS),
    }


def _ad_fields(account_id: str, snap: AdSnapshot) -> Dict[str, Any]:
    return {
        "ad_set_id": snap.ad_set_id,
        "campaign_id": snap.campaign_id,
        "ad_account_id": account_id,
        "name": snap.name,
        "status": snap.status or "UNKNOWN",
        "effective_status": snap.effective_status or "UNKNOWN",
        "thumbnail": snap.thumbnail_url,
        "page_id": snap.page_id,
        "budget": snap.budget,
        "updated_at": utcnow(),
        **_metrics(snap, ENTITY_METRICS),
        **_metrics(snap, AD_METRICS),
    }


def _publish_changes(
    events: EventRegistry, tenant_id: str, account: AdAccount, changes: List[AdChange]
) -> None:
    for change in changes:
        events.publish(
            tenant_id,
            SyncEvent(
                type=f"{change.type}_{change.action.value}",
                data={
                    "ad_account_id": account.id,
                    "ad_account_name": account.name,
                    **change.model_dump(mode="json"),
                },
            ),
        )


async def sync_ad_account(
    store: Store,
    gateway: RemotePlatformGateway,
    tenant_id: str,
    account_snap: AdAccountSnapshot,
    events: EventRegistry = ad_events,
) -> AdSyncResult:
    """Full tree sync of one ad account; gateway errors propagate to the caller."""
    result = AdSyncResult(ad_account_id=account_snap.id)
    account = _upsert_account(store, tenant_id, account_snap)

    # ── Campaigns ──
    campaigns = await gateway.list_campaigns(account.id)
    campaign_ids: Set[str] = set()
    totals = {"spend": 0.0, "impressions": 0, "reach": 0, "clicks": 0}
    for snap in campaigns:
        fields = {
            "ad_account_id": account.id,
            "name": snap.name,
            "status": snap.status or "UNKNOWN",
            "effective_status": snap.effective_status or "UNKNOWN",
            "objective": snap.objective,
            "daily_budget": snap.daily_budget,
            "lifetime_budget": snap.lifetime_budget,
            "budget_remaining": snap.budget_remaining,
            "start_time": snap.start_time,
            "stop_time": snap.stop_time,
            "updated_at": utcnow(),
            **_metrics(snap, ENTITY_METRICS),
        }
        try:
            store.upsert(Campaign, snap.id, create=fields, update=fields)
        except Exception as e:
            logger.error(f"Failed to save campaign {snap.id}: {e}", extra={"tenant_id": tenant_id})
            continue
        campaign_ids.add(snap.id)
        for key in totals:
            totals[key] += getattr(snap, key)
    result.campaigns_count = len(campaign_ids)

    # ── Ad Sets ──
    ad_set_ids: Set[str] = set()
    if campaign_ids:
        for snap in await gateway.list_ad_sets(account.id):
            if snap.campaign_id not in campaign_ids:
                logger.warning(f"Ad set {snap.id} references unknown campaign {snap.campaign_id}")
                continue
            fields = _ad_set_fields(account.id, snap)
            try:
                store.upsert(AdSet, snap.id, create=fields, update=fields)
            except Exception as e:
                logger.error(f"Failed to save ad set {snap.id}: {e}", extra={"tenant_id": tenant_id})
                continue
            ad_set_ids.add(snap.id)
    result.ad_sets_count = len(ad_set_ids)

    # ── Ads ──
    previous = [
        ad
        for ad in store.find_by_scope(FacebookAd, "ad_account_id", [account.id])
        if ad.effective_status != DELETED_STATUS
    ]
    fresh = [
        snap
        for snap in (await gateway.list_ads(account.id) if ad_set_ids else [])
        if snap.ad_set_id in ad_set_ids
    ]
    changes = detect_ad_changes(previous, fresh)

    for snap in fresh:
        fields = _ad_fields(account.id, snap)
        try:
            store.upsert(FacebookAd, snap.id, create=fields, update=fields)
        except Exception as e:
            logger.error(f"Failed to save ad {snap.id}: {e}", extra={"tenant_id": tenant_id})
            continue
        result.ads_count += 1

    # Ads that vanished stay as rows, flagged so they are not reported again
    for change in changes:
        if change.action == ChangeAction.DELETED:
            try:
                store.update(FacebookAd, change.id, {"effective_status": DELETED_STATUS})
            except Exception as e:
                logger.error(f"Failed to flag ad {change.id} deleted: {e}")

    # ── Account aggregates ──
    statuses = [snap.effective_status or snap.status for snap in fresh]
    account = store.update(
        AdAccount,
        account.id,
        {
            "total_ads": len(fresh),
            "active_ads": statuses.count("ACTIVE"),
            "paused_ads": statuses.count("PAUSED"),
            "total_spend": totals["spend"],
            "total_impressions": totals["impressions"],
            "total_reach": totals["reach"],
            "total_clicks": totals["clicks"],
            "last_sync_at": utcnow(),
        },
    )

    result.changes = changes
    if changes:
        logger.info(
            f"Detected {len(changes)} changes for account {account.name}",
            extra={"tenant_id": tenant_id},
        )
        _publish_changes(events, tenant_id, account, changes)
    return result
