from __future__ import annotations

from contextlib import contextmanager

import pytest
from sqlalchemy.exc import OperationalError

import contractorbook.store as store_mod
from contractorbook.defaults import DEFAULT_CATEGORIES, DEFAULT_PROFILE
from contractorbook.models import (
    Collection,
    ContractorProfile,
    ExpenseRecord,
    Job,
    ReceiptItem,
    UserRole,
)
from contractorbook.defaults import BUILTIN_ACCOUNTS
from contractorbook.store import LocalRecordStore


def _expense(**kw) -> ExpenseRecord:
    base = dict(
        job_id="job-1",
        merchant_name="Home Depot",
        date="2025-03-02",
        total_amount=120.5,
        items=(ReceiptItem(description="Lumber", amount=120.5),),
    )
    base.update(kw)
    return ExpenseRecord(**base)


def test_fresh_store_shows_seed_jobs_and_no_expenses(store: LocalRecordStore):
    assert [j.id for j in store.jobs()] == ["job-1", "job-2"]
    assert store.expenses() == []
    assert store.pending_count() == 2  # seeds are local until pushed


def test_upsert_prepends_new_and_replaces_in_place(store: LocalRecordStore):
    a = _expense(merchant_name="A")
    b = _expense(merchant_name="B")
    store.upsert(Collection.EXPENSES, a)
    store.upsert(Collection.EXPENSES, b)
    assert [e.merchant_name for e in store.expenses()] == ["B", "A"]

    store.upsert(Collection.EXPENSES, a.with_local_change(merchant_name="A2"))
    assert [e.merchant_name for e in store.expenses()] == ["B", "A2"]


def test_read_after_write_survives_reload(database_url: str):
    store = LocalRecordStore()
    rec = _expense(notes="porch", items=(ReceiptItem(description="x", amount=1, job_id="job-2"),))
    assert store.upsert(Collection.EXPENSES, rec) is True
    store.set_endpoint_url("  https://script.google.com/macros/s/abc/exec ")

    reloaded = LocalRecordStore(database_url=database_url)
    assert reloaded.expenses() == [rec]
    assert reloaded.get(Collection.EXPENSES, rec.id).items[0].job_id == "job-2"
    assert reloaded.endpoint_url() == "https://script.google.com/macros/s/abc/exec"


def test_deleting_every_job_does_not_bring_seeds_back():
    store = LocalRecordStore()
    store.remove(Collection.JOBS, "job-1")
    store.remove(Collection.JOBS, "job-2")
    assert store.jobs() == []

    assert LocalRecordStore().jobs() == []


def test_mark_synced_only_touches_the_flag(store: LocalRecordStore):
    rec = _expense()
    store.upsert(Collection.EXPENSES, rec)
    assert store.mark_synced(Collection.EXPENSES, rec.id, expected=rec) is True
    stored = store.get(Collection.EXPENSES, rec.id)
    assert stored.is_synced is True
    assert stored.model_copy(update={"is_synced": False}) == rec


def test_mark_synced_skips_a_record_edited_after_push(store: LocalRecordStore):
    rec = _expense()
    store.upsert(Collection.EXPENSES, rec)
    store.upsert(Collection.EXPENSES, rec.with_local_change(notes="changed"))
    assert store.mark_synced(Collection.EXPENSES, rec.id, expected=rec) is False
    assert store.get(Collection.EXPENSES, rec.id).is_synced is False


def test_mark_synced_unknown_id_is_false(store: LocalRecordStore):
    assert store.mark_synced(Collection.JOBS, "nope") is False


def test_upsert_rejects_wrong_record_type(store: LocalRecordStore):
    with pytest.raises(TypeError):
        store.upsert(Collection.JOBS, _expense())


def test_persist_failure_keeps_in_memory_copy(store: LocalRecordStore, monkeypatch):
    @contextmanager
    def _full_disk(*a, **kw):
        raise OperationalError("INSERT", {}, Exception("database or disk is full"))
        yield  # pragma: no cover

    monkeypatch.setattr(store_mod, "session_scope", _full_disk)
    rec = _expense()
    assert store.upsert(Collection.EXPENSES, rec) is False
    # Still readable in this process, still pending.
    assert store.get(Collection.EXPENSES, rec.id) == rec
    assert store.pending_count() == 3


def test_settings_defaults_and_round_trip(store: LocalRecordStore, database_url: str):
    assert store.current_user() is None
    assert store.categories() == list(DEFAULT_CATEGORIES)
    assert store.profile() == DEFAULT_PROFILE
    assert store.endpoint_url() == ""

    store.set_current_user(BUILTIN_ACCOUNTS[UserRole.USER])
    store.set_categories(["Lumber", " Lumber ", "", "Fuel"])
    store.set_profile(ContractorProfile(business_name="Acme Build", owner_name="Pat"))

    again = LocalRecordStore(database_url=database_url)
    assert again.current_user() == BUILTIN_ACCOUNTS[UserRole.USER]
    assert again.categories() == ["Lumber", "Fuel"]
    assert again.profile().business_name == "Acme Build"

    again.set_current_user(None)
    assert LocalRecordStore(database_url=database_url).current_user() is None


def test_replace_all_sets_order_and_content(store: LocalRecordStore):
    jobs = [Job(id="j-b", name="B", is_synced=True), Job(id="j-a", name="A")]
    store.replace_all(Collection.JOBS, jobs)
    assert store.jobs() == jobs
    assert LocalRecordStore().jobs() == jobs
    assert store.pending_count() == 1


def test_replace_all_keeps_first_of_repeated_ids(store: LocalRecordStore, database_url: str):
    dup = [Job(id="J1", name="first", is_synced=True), Job(id="J1", name="second")]
    assert store.replace_all(Collection.JOBS, dup) is True
    assert [j.name for j in store.jobs()] == ["first"]

    assert store.upsert(Collection.JOBS, Job(id="J-new", name="New")) is True
    reloaded = LocalRecordStore(database_url=database_url)
    assert [j.id for j in reloaded.jobs()] == ["J-new", "J1"]
