"""Wire format of the spreadsheet webhook.

Push payloads (POST, JSON text body)
------------------------------------
- Job: ``{type: "job", id, name, client, address, contactName, phone, email,
  status, budget, syncTimestamp}``
- Expense: one call per receipt, flattened to one entry per line item::

      {type: "expense_batch", receiptId, entries: [
          {id: "<receiptId>_<index>", receiptId, date, merchantName, jobId,
           jobName, category, amount, description, notes, syncTimestamp}, ...]}

  The remote side deletes every row whose entry id belongs to ``receiptId``
  (see :func:`entry_belongs_to`) and appends the new entries, so re-pushing an
  edited receipt replaces its rows instead of duplicating them.
- Connectivity probe: ``{type: "test"}``

Pull response (GET, JSON body)
------------------------------
``{jobs: [{id, name, client, address, contactName, phone, email, status,
budget}], expenses: [{id, date, merchantName, jobId, jobName, category, amount,
description, notes}]}``

Each remote expense row becomes a local record with exactly one line item.
The original multi-item split of a receipt is not preserved by the remote
store; a pushed three-item receipt comes back as three single-item records.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime
from importlib.resources import files
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import RemoteResponseError
from .logging_setup import get_logger
from .models import (
    ExpenseRecord,
    Job,
    JobStatus,
    ReceiptItem,
    RecordKind,
    RemoteSnapshot,
    to_money,
)

ENTRY_ID_SEPARATOR = "_"
DEFAULT_JOB_NAME = "Default"
DEFAULT_ITEM_DESCRIPTION = "General Item"

_logger = get_logger("contractorbook.wire")


def _sync_timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Composite entry ids
# ---------------------------------------------------------------------------


def entry_id(receipt_id: str, index: int) -> str:
    return f"{receipt_id}{ENTRY_ID_SEPARATOR}{index}"


def receipt_id_of(entry: str) -> str:
    """Return the receipt id segment of a composite entry id (text before the
    first separator)."""

    return str(entry).split(ENTRY_ID_SEPARATOR, 1)[0]


def entry_belongs_to(entry: str, receipt_id: str) -> bool:
    """Exact ownership test used by delete-and-replace.

    ``"abc_0"`` belongs to ``"abc"``; ``"abc2_0"`` does not, even though it
    starts with ``"abc"``.
    """

    return receipt_id_of(entry) == str(receipt_id)



def webhook_script() -> str:
    """Return the Apps Script source that serves this wire format from a Google
    Sheet. Its expense delete rule is the same test as :func:`entry_belongs_to`."""

    return files("contractorbook").joinpath("resources", "sheet_webhook.gs").read_text("utf-8")

# ---------------------------------------------------------------------------
# Push payloads
# ---------------------------------------------------------------------------


def job_payload(job: Job) -> dict[str, Any]:
    return {
        "type": RecordKind.JOB.value,
        "id": job.id,
        "name": job.name,
        "client": job.client,
        "address": job.address,
        "contactName": job.contact_name or "",
        "phone": job.phone or "",
        "email": job.email or "",
        "status": job.status.value,
        "budget": job.budget or 0,
        "syncTimestamp": _sync_timestamp(),
    }


def _record_date(record: ExpenseRecord) -> str:
    if record.date or not record.timestamp:
        return record.date
    return datetime.fromtimestamp(record.timestamp / 1000, tz=UTC).date().isoformat()


def _lines(record: ExpenseRecord) -> tuple[ReceiptItem, ...]:
    """Line items to flatten. A receipt without items is sent as one row
    carrying its total, so the remote never ends up with zero rows for it."""

    if record.items:
        return record.items
    return (
        ReceiptItem(
            description=record.merchant_name or DEFAULT_ITEM_DESCRIPTION,
            amount=record.total_amount,
        ),
    )


def expense_batch_payload(
    record: ExpenseRecord, *, jobs: Iterable[Job] = ()
) -> dict[str, Any]:
    """Flatten ``record`` into one wire entry per line item.

    ``jobs`` resolves each entry's ``jobName``; unknown ids fall back to
    ``"Default"``. A record without items yields a single entry for its total.
    """

    names = {j.id: j.name for j in jobs}
    stamp = _sync_timestamp()
    entries: list[dict[str, Any]] = []
    for index, item in enumerate(_lines(record)):
        job_id = record.effective_job_id(item)
        entries.append(
            {
                "id": entry_id(record.id, index),
                "receiptId": record.id,
                "date": _record_date(record),
                "merchantName": record.merchant_name,
                "jobId": job_id,
                "jobName": names.get(job_id) or DEFAULT_JOB_NAME,
                "category": record.category,
                "amount": item.amount,
                "description": item.description,
                "notes": record.notes or "",
                "syncTimestamp": stamp,
            }
        )
    return {
        "type": RecordKind.EXPENSE_BATCH.value,
        "receiptId": record.id,
        "entries": entries,
    }


def probe_payload() -> dict[str, Any]:
    return {"type": RecordKind.TEST.value}


def build_payload(
    kind: RecordKind, record: Job | ExpenseRecord | None = None, *, jobs: Iterable[Job] = ()
) -> dict[str, Any]:
    """Serialize ``record`` for the explicit ``kind`` tag."""

    if kind is RecordKind.TEST:
        return probe_payload()
    if kind is RecordKind.JOB:
        if not isinstance(record, Job):
            raise TypeError(f"kind=job requires a Job, got {type(record).__name__}")
        return job_payload(record)
    if kind is RecordKind.EXPENSE_BATCH:
        if not isinstance(record, ExpenseRecord):
            raise TypeError(
                f"kind=expense_batch requires an ExpenseRecord, got {type(record).__name__}"
            )
        return expense_batch_payload(record, jobs=jobs)
    raise ValueError(f"unknown record kind: {kind!r}")


# ---------------------------------------------------------------------------
# Pull rows
# ---------------------------------------------------------------------------


def _text(v: Any) -> str:
    return "" if v is None else str(v).strip()


class _RemoteJobRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    name: str = ""
    client: str = ""
    address: str = ""
    contact_name: str = Field(default="", alias="contactName")
    phone: str = ""
    email: str = ""
    status: JobStatus = JobStatus.ACTIVE
    budget: float = 0.0

    @field_validator("id", mode="before")
    @classmethod
    def _id_required(cls, v: Any) -> str:
        s = _text(v)
        if not s:
            raise ValueError("job row without id")
        return s

    @field_validator("name", "client", "address", "contact_name", "phone", "email", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> str:
        return _text(v)

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v: Any) -> str:
        s = _text(v).lower()
        return s if s in {m.value for m in JobStatus} else JobStatus.ACTIVE.value

    @field_validator("budget", mode="before")
    @classmethod
    def _budget(cls, v: Any) -> float:
        return max(0.0, to_money(v))

    def to_job(self) -> Job:
        return Job(
            id=self.id,
            name=self.name,
            client=self.client,
            address=self.address,
            contact_name=self.contact_name,
            phone=self.phone,
            email=self.email,
            status=self.status,
            budget=self.budget,
            is_synced=True,
        )


class _RemoteExpenseRow(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    date: str = ""
    merchant_name: str = Field(default="", alias="merchantName")
    job_id: str = Field(default="", alias="jobId")
    category: str = ""
    amount: Any = None
    total_amount: Any = Field(default=None, alias="totalAmount")
    tax_amount: Any = Field(default=None, alias="taxAmount")
    description: str = ""
    notes: str = ""

    @field_validator("id", mode="before")
    @classmethod
    def _id_required(cls, v: Any) -> str:
        s = _text(v)
        if not s:
            raise ValueError("expense row without id")
        return s

    @field_validator(
        "date", "merchant_name", "job_id", "category", "description", "notes", mode="before"
    )
    @classmethod
    def _as_text(cls, v: Any) -> str:
        return _text(v)

    def _timestamp(self) -> int:
        # Derived from the row only, so repeated pulls of the same row are equal.
        try:
            parsed = datetime.fromisoformat(self.date.replace("Z", "+00:00"))
        except ValueError:
            return 0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=UTC)
        return int(parsed.timestamp() * 1000)

    def to_record(self) -> ExpenseRecord:
        amount = to_money(self.amount if self.amount not in (None, "") else self.total_amount)
        return ExpenseRecord(
            id=self.id,
            job_id=self.job_id,
            merchant_name=self.merchant_name,
            date=self.date,
            total_amount=amount,
            tax_amount=to_money(self.tax_amount),
            currency="$",
            category=self.category or "Other",
            notes=self.notes,
            items=(
                ReceiptItem(
                    description=self.description or DEFAULT_ITEM_DESCRIPTION,
                    amount=amount,
                    job_id=self.job_id or None,
                ),
            ),
            timestamp=self._timestamp(),
            is_synced=True,
        )


def _first_by_id[R: (Job, ExpenseRecord)](rows: tuple[R, ...], label: str) -> tuple[R, ...]:
    seen: set[str] = set()
    kept: list[R] = []
    for row in rows:
        if row.id in seen:
            _logger.warning("wire:duplicate_row_dropped collection=%s id=%s", label, row.id)
            continue
        seen.add(row.id)
        kept.append(row)
    return tuple(kept)

def parse_snapshot(body: Any) -> RemoteSnapshot:
    """Map a decoded pull body to typed records.

    Rows repeating an earlier id (a hand-edited sheet) are dropped; the first
    row for each id wins.

    Raises :class:`~contractorbook.errors.RemoteResponseError` for error
    replies or any row that fails validation; no partial snapshot is ever
    returned.
    """

    if not isinstance(body, Mapping):
        raise RemoteResponseError(f"pull body is not an object: {type(body).__name__}")
    if "error" in body:
        raise RemoteResponseError(f"remote reported error: {body.get('error')}")

    raw_jobs = body.get("jobs") or []
    raw_expenses = body.get("expenses") or []
    if not isinstance(raw_jobs, Sequence) or isinstance(raw_jobs, (str, bytes)):
        raise RemoteResponseError("pull body 'jobs' is not a list")
    if not isinstance(raw_expenses, Sequence) or isinstance(raw_expenses, (str, bytes)):
        raise RemoteResponseError("pull body 'expenses' is not a list")

    try:
        jobs = tuple(_RemoteJobRow.model_validate(j).to_job() for j in raw_jobs)
        expenses = tuple(
            _RemoteExpenseRow.model_validate(e).to_record() for e in raw_expenses
        )
    except ValidationError as e:
        raise RemoteResponseError(f"malformed pull row: {e.error_count()} error(s)") from e

    return RemoteSnapshot(
        jobs=_first_by_id(jobs, "jobs"),
        expenses=_first_by_id(expenses, "expenses"),
    )


__all__ = [
    "DEFAULT_JOB_NAME",
    "build_payload",
    "entry_belongs_to",
    "entry_id",
    "expense_batch_payload",
    "job_payload",
    "parse_snapshot",
    "probe_payload",
    "receipt_id_of",
    "webhook_script",
]
