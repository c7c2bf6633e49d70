"""Read-only queries over the local collections (search and spend totals)."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from .models import ExpenseRecord, Job, to_money


def search_expenses(
    expenses: Iterable[ExpenseRecord],
    jobs: Iterable[Job],
    query: str = "",
    job_id: str | None = None,
) -> list[ExpenseRecord]:
    """Filter expenses by a case-insensitive substring and an optional job.

    The query is matched against the merchant name, the primary job's name and
    the notes. ``job_id`` keeps only records whose primary job matches.
    """

    names = {j.id: j.name for j in jobs}
    needle = (query or "").strip().lower()
    out: list[ExpenseRecord] = []
    for rec in expenses:
        if job_id and rec.job_id != job_id:
            continue
        if needle:
            haystack = (rec.merchant_name, names.get(rec.job_id, ""), rec.notes)
            if not any(needle in h.lower() for h in haystack):
                continue
        out.append(rec)
    return out


def total_spent(expenses: Iterable[ExpenseRecord]) -> float:
    return to_money(sum((Decimal(str(e.total_amount)) for e in expenses), Decimal("0")))


def spend_by_job(expenses: Iterable[ExpenseRecord]) -> dict[str, float]:
    """Allocate spend to jobs.

    Line items count toward their effective job (item override or the record's
    primary job). Whatever part of ``total_amount`` the items do not cover
    (tax, fees, or a record with no items) goes to the primary job.
    """

    acc: dict[str, Decimal] = {}
    for rec in expenses:
        allocated = Decimal("0")
        for it in rec.items:
            amt = Decimal(str(it.amount))
            key = rec.effective_job_id(it)
            acc[key] = acc.get(key, Decimal("0")) + amt
            allocated += amt
        remainder = Decimal(str(rec.total_amount)) - allocated
        if remainder:
            acc[rec.job_id] = acc.get(rec.job_id, Decimal("0")) + remainder
    return {k: to_money(v) for k, v in acc.items()}


@dataclass(frozen=True, slots=True)
class JobBudgetLine:
    job_id: str
    name: str
    budget: float
    spent: float

    @property
    def remaining(self) -> float:
        return to_money(Decimal(str(self.budget)) - Decimal(str(self.spent)))

    @property
    def over_budget(self) -> bool:
        return self.budget > 0 and self.spent > self.budget


def job_budget_summary(
    jobs: Sequence[Job], expenses: Iterable[ExpenseRecord]
) -> list[JobBudgetLine]:
    """One line per job, in job order, with allocated spend against budget."""

    spent = spend_by_job(expenses)
    return [
        JobBudgetLine(job_id=j.id, name=j.name, budget=j.budget, spent=spent.get(j.id, 0.0))
        for j in jobs
    ]


__all__ = [
    "JobBudgetLine",
    "job_budget_summary",
    "search_expenses",
    "spend_by_job",
    "total_spent",
]
