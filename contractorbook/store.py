"""Local record store: the canonical local copy of Jobs and Expenses.

Reads are served from an in-process mirror; every mutation updates the mirror
first and then writes the whole collection through to SQLite in one short
transaction. A read immediately after a write therefore always sees that
write, even when the durable step fails.

Persistence failures (disk full, locked database, any ``SQLAlchemyError``) are
logged and reported by returning ``False``. They never raise to the caller:
the record stays usable for the running process but may be lost on reload.

Settings (current user, categories, contractor profile, endpoint URL) live in
a key/value table and fall back to :mod:`contractorbook.defaults` when absent.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from .db.client import session_scope
from .db.models import ExpenseRow, JobRow, SettingRow
from .defaults import DEFAULT_CATEGORIES, DEFAULT_PROFILE, INITIAL_JOBS
from .logging_setup import get_logger
from .models import (
    Collection,
    ContractorProfile,
    ExpenseRecord,
    Job,
    ReceiptItem,
    Record,
    UserAccount,
)

_logger = get_logger("contractorbook.store")

# Setting keys
KEY_USER = "user"
KEY_CATEGORIES = "categories"
KEY_PROFILE = "profile"
KEY_ENDPOINT_URL = "endpoint_url"
# Set once the jobs collection has been written; before that, seeds are shown.
KEY_JOBS_INITIALIZED = "jobs_initialized"

_RECORD_TYPES: dict[Collection, type] = {
    Collection.JOBS: Job,
    Collection.EXPENSES: ExpenseRecord,
}


# ---- Row <-> model mapping --------------------------------------------------


def _job_to_row(job: Job, position: int) -> JobRow:
    return JobRow(
        id=job.id,
        position=position,
        name=job.name,
        client=job.client,
        address=job.address,
        contact_name=job.contact_name,
        phone=job.phone,
        email=job.email,
        status=job.status.value,
        budget=job.budget,
        is_synced=job.is_synced,
    )


def _row_to_job(row: JobRow) -> Job:
    return Job(
        id=row.id,
        name=row.name,
        client=row.client,
        address=row.address,
        contact_name=row.contact_name,
        phone=row.phone,
        email=row.email,
        status=row.status,
        budget=row.budget,
        is_synced=bool(row.is_synced),
    )


def _expense_to_row(rec: ExpenseRecord, position: int) -> ExpenseRow:
    return ExpenseRow(
        id=rec.id,
        position=position,
        job_id=rec.job_id,
        merchant_name=rec.merchant_name,
        date=rec.date,
        total_amount=rec.total_amount,
        tax_amount=rec.tax_amount,
        currency=rec.currency,
        category=rec.category,
        notes=rec.notes,
        items=[it.model_dump(mode="json") for it in rec.items],
        image_url=rec.image_url,
        timestamp=rec.timestamp,
        is_synced=rec.is_synced,
    )


def _row_to_expense(row: ExpenseRow) -> ExpenseRecord:
    return ExpenseRecord(
        id=row.id,
        job_id=row.job_id,
        merchant_name=row.merchant_name,
        date=row.date,
        total_amount=row.total_amount,
        tax_amount=row.tax_amount,
        currency=row.currency,
        category=row.category,
        notes=row.notes,
        items=tuple(ReceiptItem.model_validate(it) for it in (row.items or [])),
        image_url=row.image_url,
        timestamp=row.timestamp,
        is_synced=bool(row.is_synced),
    )


# ---- Store -------------------------------------------------------------------


class LocalRecordStore:
    """Write-through store for the two record collections and app settings.

    Parameters
    ----------
    database_url:
        SQLAlchemy URL; falls back to ``CONTRACTORBOOK_DATABASE_URL``.
    """

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url
        self._records: dict[Collection, list[Any]] = {
            Collection.JOBS: [],
            Collection.EXPENSES: [],
        }
        self._settings: dict[str, Any] = {}
        self.load()

    # -- loading ---------------------------------------------------------------

    def load(self) -> None:
        """(Re)load collections and settings from the database.

        A database that cannot be read leaves the store with defaults; the
        failure is logged rather than raised.
        """

        try:
            with session_scope(database_url=self._database_url) as session:
                job_rows = session.scalars(select(JobRow).order_by(JobRow.position)).all()
                expense_rows = session.scalars(
                    select(ExpenseRow).order_by(ExpenseRow.position)
                ).all()
                setting_rows = session.scalars(select(SettingRow)).all()
                jobs = [_row_to_job(r) for r in job_rows]
                expenses = [_row_to_expense(r) for r in expense_rows]
                settings = {r.key: r.value for r in setting_rows}
        except (SQLAlchemyError, ValidationError) as e:
            _logger.error("store:load_failed error=%s", e)
            jobs, expenses, settings = [], [], {}

        if not jobs and not settings.get(KEY_JOBS_INITIALIZED):
            jobs = list(INITIAL_JOBS)
        self._records[Collection.JOBS] = jobs
        self._records[Collection.EXPENSES] = expenses
        self._settings = settings
        _logger.debug(
            "store:loaded jobs=%d expenses=%d settings=%d",
            len(jobs),
            len(expenses),
            len(settings),
        )

    # -- collection reads ------------------------------------------------------

    def get_all(self, collection: Collection) -> list[Any]:
        """Return the records of ``collection`` in display order (a copy)."""

        return list(self._records[collection])

    def jobs(self) -> list[Job]:
        return self.get_all(Collection.JOBS)

    def expenses(self) -> list[ExpenseRecord]:
        return self.get_all(Collection.EXPENSES)

    def get(self, collection: Collection, record_id: str) -> Any | None:
        for rec in self._records[collection]:
            if rec.id == record_id:
                return rec
        return None

    def unsynced(self, collection: Collection) -> list[Any]:
        return [r for r in self._records[collection] if not r.is_synced]

    def pending_count(self) -> int:
        """Records in either collection not yet confirmed remotely."""

        return sum(len(self.unsynced(c)) for c in Collection)

    # -- collection writes -----------------------------------------------------

    def upsert(self, collection: Collection, record: Record) -> bool:
        """Replace the record with the same id in place, or prepend it.

        Returns ``False`` when the durable write failed (the in-memory copy
        is updated regardless).
        """

        self._check_type(collection, record)
        current = self._records[collection]
        for idx, existing in enumerate(current):
            if existing.id == record.id:
                current[idx] = record
                break
        else:
            current.insert(0, record)
        return self._persist(collection)

    def remove(self, collection: Collection, record_id: str) -> bool:
        current = self._records[collection]
        kept = [r for r in current if r.id != record_id]
        if len(kept) == len(current):
            return True
        self._records[collection] = kept
        return self._persist(collection)

    def replace_all(self, collection: Collection, records: Iterable[Record]) -> bool:
        """Swap in a whole collection. Ids stay unique: a repeated id keeps
        its first record."""

        materialized: list[Record] = []
        seen: set[str] = set()
        for rec in records:
            self._check_type(collection, rec)
            if rec.id in seen:
                _logger.warning(
                    "store:duplicate_id_dropped collection=%s id=%s", collection.value, rec.id
                )
                continue
            seen.add(rec.id)
            materialized.append(rec)
        self._records[collection] = materialized
        return self._persist(collection)

    def mark_synced(
        self, collection: Collection, record_id: str, *, expected: Record | None = None
    ) -> bool:
        """Flag one record as confirmed remotely without touching its content.

        When ``expected`` is given, the flag is only set if the stored record
        still equals it; a record edited after it was pushed stays unsynced.
        Returns ``False`` when nothing was marked (record gone or changed) or
        when the durable write failed.
        """

        current = self._records[collection]
        for idx, existing in enumerate(current):
            if existing.id == record_id:
                if expected is not None and existing != expected:
                    return False
                if not existing.is_synced:
                    current[idx] = existing.model_copy(update={"is_synced": True})
                    return self._persist(collection)
                return True
        return False

    # -- settings --------------------------------------------------------------

    def current_user(self) -> UserAccount | None:
        raw = self._settings.get(KEY_USER)
        if not raw:
            return None
        try:
            return UserAccount.model_validate(raw)
        except ValidationError as e:
            _logger.warning("store:bad_setting key=%s error=%s", KEY_USER, e)
            return None

    def set_current_user(self, user: UserAccount | None) -> bool:
        return self._put_setting(KEY_USER, user.model_dump(mode="json") if user else None)

    def categories(self) -> list[str]:
        raw = self._settings.get(KEY_CATEGORIES)
        if isinstance(raw, list) and raw:
            return [str(c) for c in raw]
        return list(DEFAULT_CATEGORIES)

    def set_categories(self, categories: Sequence[str]) -> bool:
        cleaned = list(dict.fromkeys(c.strip() for c in categories if c and c.strip()))
        return self._put_setting(KEY_CATEGORIES, cleaned)

    def profile(self) -> ContractorProfile:
        raw = self._settings.get(KEY_PROFILE)
        if not raw:
            return DEFAULT_PROFILE
        try:
            return ContractorProfile.model_validate(raw)
        except ValidationError as e:
            _logger.warning("store:bad_setting key=%s error=%s", KEY_PROFILE, e)
            return DEFAULT_PROFILE

    def set_profile(self, profile: ContractorProfile) -> bool:
        return self._put_setting(KEY_PROFILE, profile.model_dump(mode="json"))

    def endpoint_url(self) -> str:
        raw = self._settings.get(KEY_ENDPOINT_URL)
        return str(raw).strip() if raw else ""

    def set_endpoint_url(self, url: str) -> bool:
        return self._put_setting(KEY_ENDPOINT_URL, url.strip())

    # -- internals -------------------------------------------------------------

    @staticmethod
    def _check_type(collection: Collection, record: Any) -> None:
        expected = _RECORD_TYPES[collection]
        if not isinstance(record, expected):
            raise TypeError(
                f"{collection.value} holds {expected.__name__} records, "
                f"got {type(record).__name__}"
            )

    def _persist(self, collection: Collection) -> bool:
        records = self._records[collection]
        try:
            with session_scope(database_url=self._database_url) as session:
                if collection is Collection.JOBS:
                    session.execute(delete(JobRow))
                    session.add_all(_job_to_row(j, i) for i, j in enumerate(records))
                    session.merge(SettingRow(key=KEY_JOBS_INITIALIZED, value=True))
                else:
                    session.execute(delete(ExpenseRow))
                    session.add_all(_expense_to_row(e, i) for i, e in enumerate(records))
        except SQLAlchemyError as e:
            _logger.warning(
                "store:persist_failed collection=%s records=%d error=%s",
                collection.value,
                len(records),
                e.__class__.__name__,
            )
            return False
        if collection is Collection.JOBS:
            self._settings[KEY_JOBS_INITIALIZED] = True
        return True

    def _put_setting(self, key: str, value: Any) -> bool:
        self._settings[key] = value
        try:
            with session_scope(database_url=self._database_url) as session:
                session.merge(SettingRow(key=key, value=value))
        except SQLAlchemyError as e:
            _logger.warning("store:setting_persist_failed key=%s error=%s", key, e)
            return False
        return True


__all__ = [
    "KEY_CATEGORIES",
    "KEY_ENDPOINT_URL",
    "KEY_PROFILE",
    "KEY_USER",
    "LocalRecordStore",
]
