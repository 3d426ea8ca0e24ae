"""AdBox — Poll Scheduler.

Decides, per tenant, when the next reconciliation pass is due and runs it
behind a global concurrency gate.

Tenant lifecycle::

    IDLE → DUE → RUNNING → (SUCCESS | FAILED) → IDLE

Due-ness is derived from SyncLog on every check (last successful
completion, plus any live IN_PROGRESS row), so a restarted process or a
second scheduler instance reaches the same decision. The in-memory record
only tracks what this process is doing right now.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from adbox.config import settings
from adbox.core.clock import as_utc, utcnow
from adbox.core.logging import get_logger
from adbox.models.ads_models import SyncLog, SyncStatus
from adbox.models.event_models import EventType, SyncEvent
from adbox.models.tenant_models import Page, Tenant
from adbox.store.repository import NotFoundError, Store
from adbox.sync.events import EventRegistry, ad_events, message_events
from adbox.sync.pipeline import sync_tenant

logger = get_logger("scheduler.poll")

Worker = Callable[[str], Awaitable[Any]]


class TenantState(str, Enum):
    IDLE = "IDLE"
    DUE = "DUE"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass
class TenantRecord:
    tenant_id: str
    state: TenantState = TenantState.IDLE
    last_outcome: Optional[TenantState] = None
    last_attempt_at: Optional[datetime] = None
    last_completed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class PollScheduler:
    """Per-tenant poll state machine with a bounded concurrency gate."""

    def __init__(
        self,
        store: Store,
        worker: Optional[Worker] = None,
        interval: Optional[timedelta] = None,
        max_concurrent: Optional[int] = None,
        tenant_delay: Optional[float] = None,
        timeout: Optional[float] = None,
        inbox_events: EventRegistry = message_events,
        ads_events: EventRegistry = ad_events,
    ):
        self.store = store
        self.worker: Worker = worker or (lambda tenant_id: sync_tenant(store, tenant_id))
        self.interval = interval or timedelta(minutes=settings.poll_interval_minutes)
        self.max_concurrent = max_concurrent or settings.max_concurrent_tenants
        self.tenant_delay = (
            settings.tenant_delay_seconds if tenant_delay is None else tenant_delay
        )
        self.timeout = settings.sync_timeout_seconds if timeout is None else timeout
        self.inbox_events = inbox_events
        self.ads_events = ads_events

        self._gate = asyncio.Semaphore(self.max_concurrent)
        self._records: Dict[str, TenantRecord] = {}
        self._tasks: Set[asyncio.Task] = set()

    def record(self, tenant_id: str) -> TenantRecord:
        if tenant_id not in self._records:
            self._records[tenant_id] = TenantRecord(tenant_id=tenant_id)
        return self._records[tenant_id]

    # ── SyncLog-derived state ──

    def last_success_at(self, tenant_id: str) -> Optional[datetime]:
        logs = self.store.find_where(
            SyncLog,
            SyncLog.tenant_id == tenant_id,
            SyncLog.status == SyncStatus.SUCCESS,
            order_by=SyncLog.completed_at.desc(),  # type: ignore[union-attr]
            limit=1,
        )
        return as_utc(logs[0].completed_at) if logs else None

    def _live_in_progress(self, tenant_id: str, now: datetime) -> bool:
        """An IN_PROGRESS row younger than the timeout means someone is syncing."""
        cutoff = now - timedelta(seconds=self.timeout)
        logs = self.store.find_where(
            SyncLog,
            SyncLog.tenant_id == tenant_id,
            SyncLog.status == SyncStatus.IN_PROGRESS,
        )
        return any(as_utc(log.started_at) > cutoff for log in logs)

    def is_due(self, tenant_id: str, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if self.record(tenant_id).state in (TenantState.DUE, TenantState.RUNNING):
            return False
        if self._live_in_progress(tenant_id, now):
            return False
        last = self.last_success_at(tenant_id)
        return last is None or now - last >= self.interval

    def recover_stale_logs(self) -> int:
        """Finalize IN_PROGRESS rows older than the timeout as FAILED."""
        cutoff = utcnow() - timedelta(seconds=self.timeout)
        recovered = 0
        for log in self.store.find_where(SyncLog, SyncLog.status == SyncStatus.IN_PROGRESS):
            if as_utc(log.started_at) > cutoff:
                continue
            try:
                self.store.update(
                    SyncLog,
                    log.id,
                    {
                        "status": SyncStatus.FAILED,
                        "completed_at": utcnow(),
                        "error": "Abandoned: sync did not finish before timeout",
                    },
                )
                recovered += 1
            except Exception as e:
                logger.error(f"Could not finalize stale sync log {log.id}: {e}")
        if recovered:
            logger.warning(f"Finalized {recovered} stale in-progress sync logs")
        return recovered

    # ── Running ──

    async def run_tenant(self, tenant_id: str, sync_type: str = "FULL") -> TenantRecord:
        """Wait for the gate, run the worker, always finalize the SyncLog."""
        record = self.record(tenant_id)
        record.state = TenantState.DUE

        async with self._gate:
            record.state = TenantState.RUNNING
            record.last_attempt_at = utcnow()
            start = time.time()
            try:
                log = self.store.add(SyncLog(tenant_id=tenant_id, sync_type=sync_type))
            except Exception as e:
                logger.error(f"Could not open sync log: {e}", extra={"tenant_id": tenant_id})
                record.last_outcome = TenantState.FAILED
                record.last_error = str(e)
                record.state = TenantState.IDLE
                return record
            logger.info(
                f"Sync started ({sync_type})",
                extra={"tenant_id": tenant_id, "sync_log_id": log.id},
            )

            result: Any = None
            error: Optional[str] = "Cancelled"
            try:
                result = await asyncio.wait_for(self.worker(tenant_id), self.timeout)
                error = None
            except asyncio.TimeoutError:
                error = f"Sync exceeded {self.timeout:.0f}s and was abandoned"
            except Exception as e:
                error = str(e) or type(e).__name__
            finally:
                outcome = TenantState.FAILED if error else TenantState.SUCCESS
                self._finalize(log, result, error)
                record.state = outcome
                record.last_outcome = outcome
                record.last_error = error
                record.last_completed_at = utcnow()

                duration_ms = int((time.time() - start) * 1000)
                extra = {
                    "tenant_id": tenant_id,
                    "sync_log_id": log.id,
                    "duration_ms": duration_ms,
                }
                if error:
                    logger.error(f"Sync failed: {error}", extra=extra)
                else:
                    logger.info("Sync succeeded", extra=extra)
                record.state = TenantState.IDLE

        self._publish_completed(tenant_id, log.id, record, result)
        return record

    def _finalize(self, log: SyncLog, result: Any, error: Optional[str]) -> None:
        fields: Dict[str, Any] = {
            "status": SyncStatus.FAILED if error else SyncStatus.SUCCESS,
            "completed_at": utcnow(),
            "error": error,
        }
        for name in ("conversations_count", "messages_count", "ads_count", "changes_count"):
            value = getattr(result, name, None)
            if value is not None:
                fields[name] = value
        try:
            self.store.update(SyncLog, log.id, fields)
        except Exception as e:
            logger.error(
                f"Could not finalize sync log {log.id}: {e}",
                extra={"tenant_id": log.tenant_id, "sync_log_id": log.id},
            )

    def _publish_completed(
        self, tenant_id: str, sync_log_id: Optional[int], record: TenantRecord, result: Any
    ) -> None:
        event = SyncEvent(
            type=EventType.SYNC_COMPLETED.value,
            data={
                "tenant_id": tenant_id,
                "sync_log_id": sync_log_id,
                "status": record.last_outcome.value if record.last_outcome else None,
                "error": record.last_error,
                "changes_count": getattr(result, "changes_count", 0),
            },
        )
        try:
            self.ads_events.publish(tenant_id, event)
            for page in self.store.find_by_scope(Page, "tenant_id", [tenant_id]):
                self.inbox_events.publish(page.id, event)
        except Exception as e:
            logger.warning(f"Could not publish sync completion: {e}", extra={"tenant_id": tenant_id})

    async def run_due_tenants(self) -> Dict[str, Any]:
        """One scheduler tick: start every due tenant, spaced by ``tenant_delay``."""
        now = utcnow()
        due: List[str] = []
        for tenant in self.store.find_where(Tenant):
            try:
                if self.is_due(tenant.id, now):
                    self.record(tenant.id).state = TenantState.DUE
                    due.append(tenant.id)
            except Exception as e:
                logger.error(f"Due check failed: {e}", extra={"tenant_id": tenant.id})

        if not due:
            logger.debug("No tenants due")
            return {"due": 0, "succeeded": 0, "failed": 0}

        logger.info(f"{len(due)} tenants due, gate={self.max_concurrent}")
        tasks = []
        for i, tenant_id in enumerate(due):
            if i and self.tenant_delay:
                await asyncio.sleep(self.tenant_delay)
            tasks.append(self._start(tenant_id, "FULL"))
        records = await asyncio.gather(*tasks, return_exceptions=True)

        succeeded = sum(
            1
            for r in records
            if isinstance(r, TenantRecord) and r.last_outcome == TenantState.SUCCESS
        )
        summary = {"due": len(due), "succeeded": succeeded, "failed": len(due) - succeeded}
        logger.info(f"Poll cycle finished: {summary}")
        return summary

    def trigger_sync_now(self, tenant_id: str) -> asyncio.Task:
        """Force a tenant to DUE and schedule it; it still waits for the gate.

        If the tenant is already queued or running (from a tick or an earlier
        trigger), the in-flight task is returned instead of starting another.
        """
        if self.store.find_by_id(Tenant, tenant_id) is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        logger.info("Manual sync requested", extra={"tenant_id": tenant_id})
        return self._start(tenant_id, "MANUAL")

    def in_flight(self, tenant_id: str) -> Optional[asyncio.Task]:
        """The queued or running task of a tenant, tick-started or manual."""
        for task in self._tasks:
            if task.get_name() == f"sync:{tenant_id}" and not task.done():
                return task
        return None

    def _start(self, tenant_id: str, sync_type: str) -> asyncio.Task:
        # One task per tenant at a time; a second request joins the first
        task = self.in_flight(tenant_id)
        if task is not None:
            logger.debug(
                f"Sync already in flight, not starting {sync_type}",
                extra={"tenant_id": tenant_id},
            )
            return task
        self.record(tenant_id).state = TenantState.DUE
        task = asyncio.create_task(
            self.run_tenant(tenant_id, sync_type=sync_type), name=f"sync:{tenant_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ── Introspection ──

    def status(self) -> Dict[str, Any]:
        now = utcnow()
        tenants = []
        for tenant in self.store.find_where(Tenant):
            record = self.record(tenant.id)
            last_success = self.last_success_at(tenant.id)
            tenants.append(
                {
                    "tenant_id": tenant.id,
                    "state": record.state.value,
                    "last_outcome": record.last_outcome.value if record.last_outcome else None,
                    "last_success_at": last_success,
                    "last_error": record.last_error,
                    "next_due_at": (last_success + self.interval) if last_success else now,
                }
            )
        return {
            "interval_minutes": self.interval.total_seconds() / 60,
            "max_concurrent": self.max_concurrent,
            "running": sum(1 for t in tenants if t["state"] == TenantState.RUNNING.value),
            "tenants": tenants,
        }
