from __future__ import annotations

import asyncio

import pytest

from contractorbook.config import AppConfig
from contractorbook.defaults import BUILTIN_ACCOUNTS
from contractorbook.models import Collection, ExpenseRecord, Job, ReceiptItem, UserRole
from contractorbook.remote import RemoteSyncClient
from contractorbook.store import LocalRecordStore
from contractorbook.sync import CycleOutcome, Direction, SyncOrchestrator, SyncState
from tests.helpers.webhook_stub import URL, SheetWebhookStub


def _orchestrator(
    store: LocalRecordStore, webhook: SheetWebhookStub, *, role: UserRole = UserRole.ADMIN
) -> SyncOrchestrator:
    store.set_current_user(BUILTIN_ACCOUNTS[role])
    store.set_endpoint_url(URL)
    return SyncOrchestrator(
        store,
        config=AppConfig(sync_delay=0),
        remote_factory=lambda url: RemoteSyncClient(url, session=webhook),
    )


def _two_jobs(store: LocalRecordStore) -> tuple[Job, Job]:
    j1, j2 = Job(id="J1", name="First", budget=1000), Job(id="J2", name="Second")
    store.replace_all(Collection.JOBS, [j1, j2])
    return j1, j2


def _expense(rid: str = "e1", job_id: str = "J1") -> ExpenseRecord:
    return ExpenseRecord(
        id=rid,
        job_id=job_id,
        merchant_name="Depot",
        total_amount=45,
        items=(ReceiptItem(description="Screws", amount=45),),
    )


def test_push_without_endpoint_is_offline_and_sends_nothing(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    store.set_endpoint_url("")
    store.upsert(Collection.JOBS, Job(id="J1", name="Deck", budget=1000))

    report = asyncio.run(orch.push_cycle())

    assert report.outcome is CycleOutcome.SKIPPED_OFFLINE
    assert store.get(Collection.JOBS, "J1").is_synced is False
    assert webhook.posts == []


def test_non_admin_push_is_silent_noop(store: LocalRecordStore, webhook: SheetWebhookStub):
    orch = _orchestrator(store, webhook, role=UserRole.USER)
    report = asyncio.run(orch.push_cycle())
    assert report.outcome is CycleOutcome.SKIPPED_UNAUTHORIZED
    assert webhook.posts == []
    assert store.pending_count() == 2


def test_push_marks_each_success_and_keeps_failures(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    _two_jobs(store)
    webhook.unreachable_ids.add("J2")

    report = asyncio.run(orch.push_cycle())

    assert report.outcome is CycleOutcome.COMPLETED
    assert (report.attempted, report.succeeded, report.failed_ids) == (2, 1, ("J2",))
    assert store.get(Collection.JOBS, "J1").is_synced is True
    assert store.get(Collection.JOBS, "J2").is_synced is False
    assert orch.pending_count() == 1


def test_rejected_record_does_not_stop_the_loop(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    _two_jobs(store)
    store.upsert(Collection.EXPENSES, _expense("e1"))
    store.upsert(Collection.EXPENSES, _expense("e2"))
    webhook.reject_ids.add("e2")

    report = asyncio.run(orch.push_cycle())

    assert report.failed_ids == ("e2",)
    synced = {r.id for c in Collection for r in store.get_all(c) if r.is_synced}
    assert synced == {"J1", "J2", "e1"}


def test_jobs_are_pushed_before_expenses(store: LocalRecordStore, webhook: SheetWebhookStub):
    orch = _orchestrator(store, webhook)
    _two_jobs(store)
    store.upsert(Collection.EXPENSES, _expense())

    asyncio.run(orch.push_cycle())

    assert [p["type"] for p in webhook.posts] == ["job", "job", "expense_batch"]
    assert webhook.posts[2]["entries"][0]["jobName"] == "First"


def test_second_push_while_in_flight_is_dropped(store: LocalRecordStore):
    webhook = SheetWebhookStub(hold=True)
    orch = _orchestrator(store, webhook)
    _two_jobs(store)

    async def scenario():
        first = asyncio.create_task(orch.push_cycle())
        await asyncio.sleep(0)
        assert orch.state(Direction.PUSH) is SyncState.IN_FLIGHT
        assert orch.status().is_busy
        second = await orch.push_cycle()
        webhook.release()
        return await first, second

    first, second = asyncio.run(scenario())

    assert second.outcome is CycleOutcome.SKIPPED_IN_FLIGHT
    assert first.succeeded == 2
    assert webhook.max_inflight == 1
    assert len(webhook.posts) == 2
    assert orch.state(Direction.PUSH) is SyncState.IDLE


def test_edit_during_push_stays_pending(store: LocalRecordStore):
    webhook = SheetWebhookStub(hold=True)
    orch = _orchestrator(store, webhook)
    store.replace_all(Collection.JOBS, [])
    rec = _expense()
    store.upsert(Collection.EXPENSES, rec)

    async def scenario():
        cycle = asyncio.create_task(orch.push_cycle())
        await asyncio.sleep(0)
        store.upsert(Collection.EXPENSES, rec.with_local_change(notes="second thoughts"))
        webhook.release()
        return await cycle

    report = asyncio.run(scenario())

    assert report.succeeded == 1
    stored = store.get(Collection.EXPENSES, rec.id)
    assert stored.notes == "second thoughts"
    assert stored.is_synced is False


def test_push_and_pull_locks_are_independent(store: LocalRecordStore):
    webhook = SheetWebhookStub(hold=True)
    orch = _orchestrator(store, webhook)

    async def scenario():
        push = asyncio.create_task(orch.push_cycle())
        await asyncio.sleep(0)
        pull = asyncio.create_task(orch.pull_cycle())
        await asyncio.sleep(0)
        states = (orch.state(Direction.PUSH), orch.state(Direction.PULL))
        webhook.release()
        await asyncio.gather(push, pull)
        return states

    assert asyncio.run(scenario()) == (SyncState.IN_FLIGHT, SyncState.IN_FLIGHT)


def test_pull_merges_remote_jobs_and_carries_pending_expense(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    store.replace_all(Collection.JOBS, [Job(id="J1", name="Local name", is_synced=True)])
    pending = _expense("E2")
    store.upsert(Collection.EXPENSES, pending)
    webhook.seed_job(id="J1", name="Remote name", status="active", budget=1000)

    report = asyncio.run(orch.pull_cycle())

    assert report.outcome is CycleOutcome.COMPLETED
    assert [(j.id, j.name, j.is_synced) for j in store.jobs()] == [("J1", "Remote name", True)]
    assert store.expenses() == [pending]
    assert report.carried == 1


def test_failed_pull_leaves_local_state_untouched(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    before = (store.jobs(), store.expenses())
    webhook.offline = True

    report = asyncio.run(orch.pull_cycle())

    assert report.outcome is CycleOutcome.FAILED
    assert (store.jobs(), store.expenses()) == before
    assert orch.status().last_pull == report


def test_repeated_pull_is_stable(store: LocalRecordStore, webhook: SheetWebhookStub):
    orch = _orchestrator(store, webhook)
    webhook.seed_job(id="J9", name="Remote", status="pending", budget=10)
    webhook.seed_expense(id="r_0", merchantName="Depot", jobId="J9", amount=3, description="x")

    asyncio.run(orch.pull_cycle())
    first = (store.jobs(), store.expenses())
    asyncio.run(orch.pull_cycle())

    assert (store.jobs(), store.expenses()) == first
    # Seed jobs were local-only and unsynced, so they are carried.
    assert [j.id for j in first[0]] == ["job-1", "job-2", "J9"]


def test_schedule_push_runs_after_delay(store: LocalRecordStore, webhook: SheetWebhookStub):
    orch = _orchestrator(store, webhook)

    async def scenario():
        task = orch.schedule_push(0)
        assert task is not None
        await orch.wait_scheduled()
        return task.result()

    report = asyncio.run(scenario())
    assert report.succeeded == 2
    assert store.pending_count() == 0


def test_schedule_push_outside_event_loop_is_skipped(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    orch = _orchestrator(store, webhook)
    assert orch.schedule_push() is None
    assert webhook.posts == []


@pytest.mark.parametrize("offline", [False, True])
def test_connection_probe(store: LocalRecordStore, webhook: SheetWebhookStub, offline: bool):
    orch = _orchestrator(store, webhook)
    webhook.offline = offline
    assert asyncio.run(orch.test_connection()) is (not offline)


def test_skipped_cycles_are_reported_in_status(store: LocalRecordStore, webhook: SheetWebhookStub):
    orch = _orchestrator(store, webhook, role=UserRole.USER)
    asyncio.run(orch.push_cycle())
    assert orch.status().last_push.outcome is CycleOutcome.SKIPPED_UNAUTHORIZED

    store.set_endpoint_url("")
    asyncio.run(orch.pull_cycle())
    assert orch.status().last_pull.outcome is CycleOutcome.SKIPPED_OFFLINE


def test_remote_client_is_reused_until_the_endpoint_changes(
    store: LocalRecordStore, webhook: SheetWebhookStub
):
    built: list[RemoteSyncClient] = []

    def factory(url: str) -> RemoteSyncClient:
        built.append(RemoteSyncClient(url, session=webhook))
        return built[-1]

    store.set_current_user(BUILTIN_ACCOUNTS[UserRole.ADMIN])
    store.set_endpoint_url(URL)
    orch = SyncOrchestrator(store, config=AppConfig(sync_delay=0), remote_factory=factory)

    asyncio.run(orch.push_cycle())
    asyncio.run(orch.pull_cycle())
    assert asyncio.run(orch.test_connection()) is True
    assert len(built) == 1
    assert webhook.closed == 0

    dev_url = URL.replace("/exec", "/dev")
    store.set_endpoint_url(dev_url)
    asyncio.run(orch.test_connection())
    assert [c.endpoint_url for c in built] == [URL, dev_url]
    assert webhook.closed == 1

    orch.close()
    assert webhook.closed == 2
