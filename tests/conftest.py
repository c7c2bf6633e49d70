"""Pytest configuration for test isolation.

Every test gets its own SQLite file through ``CONTRACTORBOOK_DATABASE_URL`` and
runs from its temporary directory, so no ``.env`` or ``contractorbook.db`` in
the working tree leaks in. Cached engines are disposed after each test so the
next test's URL starts from a fresh schema.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from pathlib import Path

import pytest

from contractorbook.db.client import dispose_engines
from contractorbook.models import UserRole
from contractorbook.remote import RemoteSyncClient
from contractorbook.service import ContractorBook
from contractorbook.store import LocalRecordStore
from tests.helpers.webhook_stub import URL, SheetWebhookStub


@pytest.fixture(autouse=True)
def _isolate_database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    db_file = tmp_path / "book.db"
    monkeypatch.setenv("CONTRACTORBOOK_DATABASE_URL", f"sqlite+pysqlite:///{db_file}")
    monkeypatch.setenv("CONTRACTORBOOK_SYNC_DELAY", "0")
    for name in ("CONTRACTORBOOK_CONFIRM_WRITES", "CONTRACTORBOOK_HTTP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    yield
    dispose_engines()


@pytest.fixture
def database_url() -> str:
    return os.environ["CONTRACTORBOOK_DATABASE_URL"]


@pytest.fixture
def store() -> LocalRecordStore:
    return LocalRecordStore()


@pytest.fixture
def webhook() -> SheetWebhookStub:
    return SheetWebhookStub()


@pytest.fixture
def remote_factory(webhook: SheetWebhookStub):
    return lambda url: RemoteSyncClient(url, session=webhook)


@pytest.fixture
def admin_book(store: LocalRecordStore, remote_factory) -> ContractorBook:
    """Book signed in as Admin with the stub endpoint stored (no pull yet)."""

    book = ContractorBook(store, remote_factory=remote_factory)
    book.login(UserRole.ADMIN)
    store.set_endpoint_url(URL)
    return book
