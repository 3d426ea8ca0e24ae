"""Poll scheduler: due logic, gate, SyncLog finalization, manual trigger."""

import asyncio
from dataclasses import dataclass
from datetime import timedelta

import pytest

from adbox.core.clock import utcnow
from adbox.models.ads_models import SyncLog, SyncStatus
from adbox.models.tenant_models import Tenant
from adbox.scheduler.poll_scheduler import PollScheduler, TenantState
from adbox.store.repository import NotFoundError


@dataclass
class Counts:
    conversations_count: int = 2
    messages_count: int = 5
    ads_count: int = 3
    changes_count: int = 1


def make_scheduler(store, events, worker, **kwargs):
    kwargs.setdefault("interval", timedelta(minutes=5))
    kwargs.setdefault("max_concurrent", 2)
    kwargs.setdefault("tenant_delay", 0)
    kwargs.setdefault("timeout", 5)
    return PollScheduler(
        store, worker, inbox_events=events, ads_events=events, **kwargs
    )


def add_tenants(store, *ids):
    for tenant_id in ids:
        store.add(Tenant(id=tenant_id, name=tenant_id))


def logs(store, tenant_id):
    return store.find_where(SyncLog, SyncLog.tenant_id == tenant_id)


# ── Due logic ──


def test_never_synced_tenant_is_due(store, events, tenant):
    scheduler = make_scheduler(store, events, None)
    assert scheduler.is_due("t1") is True


def test_recent_success_is_not_due_until_interval(store, events, tenant):
    store.add(
        SyncLog(
            tenant_id="t1",
            status=SyncStatus.SUCCESS,
            completed_at=utcnow() - timedelta(minutes=2),
        )
    )
    scheduler = make_scheduler(store, events, None)

    assert scheduler.is_due("t1") is False
    assert scheduler.is_due("t1", now=utcnow() + timedelta(minutes=4)) is True


def test_failed_runs_do_not_count_as_success(store, events, tenant):
    store.add(SyncLog(tenant_id="t1", status=SyncStatus.FAILED, completed_at=utcnow()))
    assert make_scheduler(store, events, None).is_due("t1") is True


def test_live_in_progress_blocks_but_stale_one_does_not(store, events, tenant):
    scheduler = make_scheduler(store, events, None, timeout=60)
    store.add(SyncLog(tenant_id="t1", status=SyncStatus.IN_PROGRESS))
    assert scheduler.is_due("t1") is False

    stale = store.find_where(SyncLog)[0]
    store.update(SyncLog, stale.id, {"started_at": utcnow() - timedelta(minutes=5)})
    assert scheduler.is_due("t1") is True
    assert scheduler.recover_stale_logs() == 1
    assert store.find_by_id(SyncLog, stale.id).status == SyncStatus.FAILED


# ── Running ──


async def test_success_finalizes_log_with_counts(store, events, received, tenant):
    async def worker(tenant_id):
        return Counts()

    scheduler = make_scheduler(store, events, worker)
    record = await scheduler.run_tenant("t1")

    [log] = logs(store, "t1")
    assert log.status == SyncStatus.SUCCESS
    assert (log.messages_count, log.ads_count, log.changes_count) == (5, 3, 1)
    assert log.completed_at is not None
    assert record.state == TenantState.IDLE
    assert record.last_outcome == TenantState.SUCCESS
    assert scheduler.is_due("t1") is False
    assert received["t1"][-1].type == "sync_completed"
    assert received["p1"][-1].data["status"] == "SUCCESS"


async def test_failure_finalizes_failed_with_error(store, events, tenant):
    async def worker(tenant_id):
        raise RuntimeError("gateway down")

    scheduler = make_scheduler(store, events, worker)
    record = await scheduler.run_tenant("t1")

    [log] = logs(store, "t1")
    assert log.status == SyncStatus.FAILED
    assert log.error == "gateway down"
    assert record.state == TenantState.IDLE
    assert record.last_outcome == TenantState.FAILED
    assert scheduler.is_due("t1") is True


async def test_timeout_abandons_and_marks_failed(store, events, tenant):
    async def worker(tenant_id):
        await asyncio.sleep(10)

    scheduler = make_scheduler(store, events, worker, timeout=0.05)
    record = await scheduler.run_tenant("t1")

    [log] = logs(store, "t1")
    assert log.status == SyncStatus.FAILED
    assert "exceeded" in log.error
    assert record.state == TenantState.IDLE


async def test_gate_bounds_concurrency(store, events):
    add_tenants(store, "a", "b", "c", "d", "e")
    running = 0
    peak = 0

    async def worker(tenant_id):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.02)
        running -= 1
        return Counts()

    scheduler = make_scheduler(store, events, worker, max_concurrent=2)
    summary = await scheduler.run_due_tenants()

    assert summary == {"due": 5, "succeeded": 5, "failed": 0}
    assert peak == 2


async def test_one_tenant_failure_does_not_stop_batch(store, events):
    add_tenants(store, "good", "bad")

    async def worker(tenant_id):
        if tenant_id == "bad":
            raise RuntimeError("nope")
        return Counts()

    summary = await make_scheduler(store, events, worker).run_due_tenants()

    assert summary == {"due": 2, "succeeded": 1, "failed": 1}
    assert logs(store, "good")[0].status == SyncStatus.SUCCESS


async def test_second_tick_skips_recently_synced(store, events, tenant):
    calls = []

    async def worker(tenant_id):
        calls.append(tenant_id)
        return Counts()

    scheduler = make_scheduler(store, events, worker)
    await scheduler.run_due_tenants()
    await scheduler.run_due_tenants()

    assert calls == ["t1"]


# ── Manual trigger ──


async def test_trigger_forces_run_regardless_of_timer(store, events, tenant):
    calls = []

    async def worker(tenant_id):
        calls.append(tenant_id)
        return Counts()

    scheduler = make_scheduler(store, events, worker)
    await scheduler.run_due_tenants()

    task = scheduler.trigger_sync_now("t1")
    assert scheduler.record("t1").state in (TenantState.DUE, TenantState.RUNNING)
    await task

    assert calls == ["t1", "t1"]
    assert [log.sync_type for log in logs(store, "t1")] == ["FULL", "MANUAL"]


async def test_trigger_while_queued_reuses_task(store, events, tenant):
    release = asyncio.Event()

    async def worker(tenant_id):
        await release.wait()
        return Counts()

    scheduler = make_scheduler(store, events, worker)
    first = scheduler.trigger_sync_now("t1")
    second = scheduler.trigger_sync_now("t1")
    release.set()
    await first

    assert first is second
    assert len(logs(store, "t1")) == 1


async def test_trigger_during_tick_joins_the_running_pass(store, events, tenant):
    running = 0
    peak = 0

    async def worker(tenant_id):
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.05)
        running -= 1
        return Counts()

    scheduler = make_scheduler(store, events, worker)
    tick = asyncio.create_task(scheduler.run_due_tenants())
    await asyncio.sleep(0.01)
    assert scheduler.record("t1").state == TenantState.RUNNING

    manual = scheduler.trigger_sync_now("t1")
    await tick
    await manual

    assert peak == 1
    assert [log.sync_type for log in logs(store, "t1")] == ["FULL"]


async def test_trigger_unknown_tenant(store, events):
    with pytest.raises(NotFoundError):
        make_scheduler(store, events, None).trigger_sync_now("ghost")


def test_status_reports_tenants(store, events, tenant):
    status = make_scheduler(store, events, None).status()

    assert status["interval_minutes"] == 5
    assert status["tenants"][0]["tenant_id"] == "t1"
    assert status["tenants"][0]["state"] == "IDLE"
    assert status["tenants"][0]["last_success_at"] is None
