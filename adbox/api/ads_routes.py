"""AdBox — Ads API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from adbox.api.dependencies import get_ad_events
from adbox.api.streaming import STREAM_HEADERS, relay_events
from adbox.core.logging import get_logger
from adbox.models.ads_models import AdAccount, AdSet, Campaign, FacebookAd
from adbox.models.tenant_models import Tenant
from adbox.store.repository import Store, get_store
from adbox.sync.events import EventRegistry

logger = get_logger("api.ads")

router = APIRouter(prefix="/ads", tags=["Ads"])


def _account_or_404(store: Store, account_id: str) -> AdAccount:
    account = store.find_by_id(AdAccount, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail=f"Ad account {account_id} not found")
    return account


@router.get("/accounts")
async def list_accounts(tenant_id: str = Query(...), store: Store = Depends(get_store)):
    """Ad accounts of a tenant with their last-sync aggregates."""
    accounts = store.find_by_scope(
        AdAccount, "tenant_id", [tenant_id], order_by=AdAccount.name
    )
    return {"status": "success", "accounts": accounts}


@router.get("/accounts/{account_id}/campaigns")
async def list_campaigns(account_id: str, store: Store = Depends(get_store)):
    _account_or_404(store, account_id)
    campaigns = store.find_by_scope(Campaign, "ad_account_id", [account_id])
    ad_sets = store.find_by_scope(AdSet, "ad_account_id", [account_id])
    return {"status": "success", "campaigns": campaigns, "ad_sets": ad_sets}


@router.get("/accounts/{account_id}/ads")
async def list_ads(
    account_id: str,
    status: Optional[str] = Query(None, description="Filter by effective status"),
    include_deleted: bool = Query(False),
    store: Store = Depends(get_store),
):
    """Stored ads of one account, highest spend first."""
    _account_or_404(store, account_id)
    ads = store.find_by_scope(
        FacebookAd,
        "ad_account_id",
        [account_id],
        order_by=FacebookAd.spend.desc(),  # type: ignore[attr-defined]
    )
    if not include_deleted:
        ads = [ad for ad in ads if ad.effective_status != "DELETED"]
    if status:
        ads = [ad for ad in ads if ad.effective_status == status.upper()]
    return {"status": "success", "count": len(ads), "ads": ads}


@router.get("/stream")
async def stream_ad_events(
    request: Request,
    tenant_id: str = Query(...),
    store: Store = Depends(get_store),
    events: EventRegistry = Depends(get_ad_events),
):
    """Server-Sent Events for ad changes of one tenant."""
    if store.find_by_id(Tenant, tenant_id) is None:
        raise HTTPException(status_code=404, detail=f"Tenant {tenant_id} not found")
    return StreamingResponse(
        relay_events(request, events, [tenant_id]),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
    )
