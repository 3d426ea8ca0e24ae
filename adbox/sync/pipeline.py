"""AdBox — Tenant Sync Pipeline.

Orchestrates one full pass for a tenant:
1. Build a gateway bound to the tenant's tokens
2. Sync each page's inbox (sequentially)
3. Sync each ad account's tree (sequentially)
4. Aggregate counts for the SyncLog

A page or account that fails is logged and skipped; the pass only fails
when every unit failed, i.e. the gateway is unavailable for this tenant.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from adbox.connectors.base_gateway import RemotePlatformGateway
from adbox.connectors.meta.gateway import MetaGateway
from adbox.core.logging import get_logger
from adbox.models.tenant_models import Page, Tenant
from adbox.store.repository import NotFoundError, Store
from adbox.sync.ads_sync import sync_ad_account
from adbox.sync.arbitration import UnreadRules
from adbox.sync.events import EventRegistry, ad_events, message_events
from adbox.sync.inbox_sync import sync_page

logger = get_logger("sync.pipeline")

GatewayFactory = Callable[[Tenant, List[Page]], RemotePlatformGateway]


class TenantUnavailableError(Exception):
    """Every page and ad account of a tenant failed in one pass."""


@dataclass
class TenantSyncResult:
    tenant_id: str
    conversations_count: int = 0
    messages_count: int = 0
    ads_count: int = 0
    changes_count: int = 0
    units_ok: int = 0
    errors: List[str] = field(default_factory=list)


def meta_gateway_factory(tenant: Tenant, pages: List[Page]) -> RemotePlatformGateway:
    return MetaGateway(
        access_token=tenant.access_token,
        page_tokens={page.id: page.access_token for page in pages},
    )


async def sync_tenant(
    store: Store,
    tenant_id: str,
    gateway_factory: GatewayFactory = meta_gateway_factory,
    rules: Optional[UnreadRules] = None,
    inbox_events: EventRegistry = message_events,
    ads_events: EventRegistry = ad_events,
) -> TenantSyncResult:
    """Run one reconciliation pass over everything the tenant owns."""
    start = time.time()
    tenant = store.find_by_id(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")

    pages = store.find_by_scope(Page, "tenant_id", [tenant_id])
    result = TenantSyncResult(tenant_id=tenant_id)
    gateway = gateway_factory(tenant, pages)

    try:
        # ── Inbox ──
        for page in pages:
            try:
                page_result = await sync_page(store, gateway, page.id, rules, inbox_events)
            except Exception as e:
                logger.error(
                    f"Page {page.id} sync failed: {e}",
                    extra={"tenant_id": tenant_id, "page_id": page.id},
                )
                result.errors.append(f"page {page.id}: {e}")
                continue
            result.units_ok += 1
            result.conversations_count += page_result.conversations
            result.messages_count += page_result.messages

        # ── Ads ──
        try:
            accounts = await gateway.list_ad_accounts()
        except Exception as e:
            logger.error(f"Listing ad accounts failed: {e}", extra={"tenant_id": tenant_id})
            result.errors.append(f"ad accounts: {e}")
            accounts = []

        for account in accounts:
            try:
                ads_result = await sync_ad_account(
                    store, gateway, tenant_id, account, ads_events
                )
            except Exception as e:
                logger.error(
                    f"Ad account {account.id} sync failed: {e}",
                    extra={"tenant_id": tenant_id},
                )
                result.errors.append(f"ad account {account.id}: {e}")
                continue
            result.units_ok += 1
            result.ads_count += ads_result.ads_count
            result.changes_count += len(ads_result.changes)
    finally:
        await gateway.close()

    if result.errors and result.units_ok == 0:
        raise TenantUnavailableError("; ".join(result.errors))

    duration_ms = int((time.time() - start) * 1000)
    logger.info(
        f"Tenant {tenant_id} synced: {result.conversations_count} conversations, "
        f"{result.messages_count} messages, {result.ads_count} ads, "
        f"{result.changes_count} changes",
        extra={"tenant_id": tenant_id, "duration_ms": duration_ms},
    )
    return result
