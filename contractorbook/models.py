"""Data models for ``contractorbook``.

Records (:class:`Job`, :class:`ExpenseRecord`) are immutable pydantic models;
edits produce copies via ``model_copy``. The sync flag ``is_synced`` is owned by
the sync flow: every local mutation goes through :meth:`Job.with_local_change`
or :meth:`ExpenseRecord.with_local_change`, which reset it to ``False``.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Tags and enums
# ---------------------------------------------------------------------------


class UserRole(StrEnum):
    ADMIN = "Admin"
    USER = "User"


class JobStatus(StrEnum):
    ACTIVE = "active"
    COMPLETED = "completed"
    PENDING = "pending"


class Collection(StrEnum):
    """The two record collections held by the local store."""

    JOBS = "jobs"
    EXPENSES = "expenses"


class RecordKind(StrEnum):
    """Explicit wire tag for a push. Callers always pass one; payloads are
    never classified by inspecting their fields."""

    JOB = "job"
    EXPENSE_BATCH = "expense_batch"
    TEST = "test"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def to_money(raw: Any) -> float:
    """Round a currency value to 2 decimals (half-up); junk becomes ``0.0``."""

    if raw is None or isinstance(raw, bool):
        return 0.0
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return 0.0
    if not d.is_finite():
        return 0.0
    return float(d.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def now_millis() -> int:
    return int(time.time() * 1000)


def new_job_id() -> str:
    return f"job-{secrets.token_hex(5)}"


def new_record_id() -> str:
    # Hex only: the wire format splits composite entry ids on "_".
    return secrets.token_hex(6)


# ---------------------------------------------------------------------------
# Accounts and profile
# ---------------------------------------------------------------------------


class UserAccount(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    role: UserRole
    email: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role is UserRole.ADMIN


class ContractorProfile(BaseModel):
    """Display details of the contractor business shown in headers/exports."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    business_name: str = ""
    owner_name: str = ""
    phone: str = ""
    email: str = ""
    logo_url: str | None = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class Job(BaseModel):
    """A project / work site that expenses are attributed to."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_job_id)
    name: str
    client: str = ""
    address: str = ""
    contact_name: str = ""
    phone: str = ""
    email: str = ""
    status: JobStatus = JobStatus.ACTIVE
    budget: float = 0.0
    is_synced: bool = False

    @field_validator("budget", mode="before")
    @classmethod
    def _budget_non_negative(cls, v: Any) -> float:
        amount = to_money(v)
        if amount < 0:
            raise ValueError("budget must be non-negative")
        return amount

    def with_local_change(self, **changes: Any) -> Job:
        """Return an edited copy flagged as not yet written remotely."""

        return self.model_copy(update={**changes, "is_synced": False})


class ReceiptItem(BaseModel):
    """One line of a receipt. ``job_id`` overrides the record's primary job."""

    model_config = ConfigDict(frozen=True)

    description: str = ""
    amount: float = 0.0
    job_id: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _round_amount(cls, v: Any) -> float:
        return to_money(v)

    @field_validator("job_id", mode="before")
    @classmethod
    def _blank_job_is_none(cls, v: Any) -> str | None:
        if v is None:
            return None
        s = str(v).strip()
        return s or None


class ExtractedReceipt(BaseModel):
    """Structured receipt fields as returned by the AI vision call."""

    model_config = ConfigDict(frozen=True)

    merchant_name: str
    date: str = ""
    total_amount: float = 0.0
    tax_amount: float = 0.0
    currency: str = "$"
    category: str = "Other"
    items: tuple[ReceiptItem, ...] = ()
    notes: str = ""
    suggested_job_id: str | None = None

    @field_validator("total_amount", "tax_amount", mode="before")
    @classmethod
    def _round_money(cls, v: Any) -> float:
        return to_money(v)


class ExpenseRecord(BaseModel):
    """A bookkeeping entry derived from one receipt."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_record_id)
    job_id: str = ""
    merchant_name: str = ""
    date: str = ""
    total_amount: float = 0.0
    tax_amount: float = 0.0
    currency: str = "$"
    category: str = "Other"
    notes: str = ""
    items: tuple[ReceiptItem, ...] = ()
    image_url: str | None = None
    timestamp: int = Field(default_factory=now_millis)
    is_synced: bool = False

    @field_validator("total_amount", "tax_amount", mode="before")
    @classmethod
    def _round_money(cls, v: Any) -> float:
        return to_money(v)

    @field_validator("notes", mode="before")
    @classmethod
    def _none_notes(cls, v: Any) -> str:
        return "" if v is None else str(v)

    def effective_job_id(self, item: ReceiptItem) -> str:
        return item.job_id or self.job_id

    def job_ids(self) -> set[str]:
        """All jobs this record touches (primary plus item overrides)."""

        ids = {self.effective_job_id(it) for it in self.items}
        if self.job_id:
            ids.add(self.job_id)
        return {i for i in ids if i}

    def items_total(self) -> float:
        total = sum((Decimal(str(it.amount)) for it in self.items), Decimal("0"))
        return to_money(total)

    def with_local_change(self, **changes: Any) -> ExpenseRecord:
        """Return an edited copy flagged as not yet written remotely.

        ``timestamp`` is immutable once set and cannot be changed here.
        """

        changes.pop("timestamp", None)
        return self.model_copy(update={**changes, "is_synced": False})

    @classmethod
    def from_extraction(
        cls,
        data: ExtractedReceipt,
        *,
        job_id: str | None = None,
        image_url: str | None = None,
    ) -> ExpenseRecord:
        """Pre-fill a new, unsynced record from extracted receipt fields."""

        return cls(
            job_id=job_id or data.suggested_job_id or "",
            merchant_name=data.merchant_name,
            date=data.date,
            total_amount=data.total_amount,
            tax_amount=data.tax_amount,
            currency=data.currency or "$",
            category=data.category,
            notes=data.notes,
            items=data.items,
            image_url=image_url,
        )


def reconcile_total(record: ExpenseRecord) -> ExpenseRecord:
    """Recompute ``total_amount`` from line items (explicit user action only)."""

    return record.with_local_change(total_amount=record.items_total())


type Record = Job | ExpenseRecord


@dataclass(frozen=True, slots=True)
class RemoteSnapshot:
    """Full remote state as read by one pull. Never persisted as such."""

    jobs: tuple[Job, ...] = field(default_factory=tuple)
    expenses: tuple[ExpenseRecord, ...] = field(default_factory=tuple)


__all__ = [
    "Collection",
    "ContractorProfile",
    "ExpenseRecord",
    "ExtractedReceipt",
    "Job",
    "JobStatus",
    "ReceiptItem",
    "Record",
    "RecordKind",
    "RemoteSnapshot",
    "UserAccount",
    "UserRole",
    "new_job_id",
    "new_record_id",
    "now_millis",
    "reconcile_total",
    "to_money",
]
