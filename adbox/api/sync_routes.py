"""AdBox — Sync Control API Routes."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from adbox.core.logging import get_logger
from adbox.models.ads_models import SyncLog
from adbox.scheduler.jobs import get_poll_scheduler
from adbox.scheduler.poll_scheduler import PollScheduler
from adbox.store.repository import NotFoundError, Store, get_store

logger = get_logger("api.sync")

router = APIRouter(prefix="/sync", tags=["Sync"])


@router.get("/status")
async def polling_status(scheduler: PollScheduler = Depends(get_poll_scheduler)):
    """Poll interval and per-tenant state, derived from SyncLog."""
    return {"status": "success", **scheduler.status()}


@router.post("/trigger/{tenant_id}", status_code=202)
async def trigger_sync(
    tenant_id: str, scheduler: PollScheduler = Depends(get_poll_scheduler)
):
    """Force a tenant to DUE; the run still waits for the concurrency gate."""
    try:
        scheduler.trigger_sync_now(tenant_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {
        "status": "queued",
        "tenant_id": tenant_id,
        "state": scheduler.record(tenant_id).state.value,
    }


@router.get("/logs")
async def sync_history(
    tenant_id: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=200),
    store: Store = Depends(get_store),
):
    """Most recent sync attempts, newest first."""
    conditions = [SyncLog.tenant_id == tenant_id] if tenant_id else []
    logs = store.find_where(
        SyncLog,
        *conditions,
        order_by=SyncLog.started_at.desc(),  # type: ignore[attr-defined]
        limit=limit,
    )
    return {"status": "success", "count": len(logs), "logs": logs}
