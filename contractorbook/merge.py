"""Merge a freshly pulled remote snapshot into the local collections.

Rules, applied independently per collection:

1. The merged sequence starts as the remote snapshot, verbatim and in the
   order received. Remote is authoritative for every id it lists.
2. Unsynced local records whose id the remote does not list are carried
   forward, placed before the remote records in their local order.
3. Unsynced local records whose id the remote does list are superseded by the
   remote copy (the push is assumed to have landed).
4. Synced local records that the remote no longer lists are dropped.

Repeating a pull with no local change in between and an unchanged remote
yields the same result. The merge is not commutative with concurrent local
edits: an edit to a remotely known id that has not been pushed when the pull
lands is overwritten by rule 3.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

from .models import ExpenseRecord, Job, RemoteSnapshot

R = TypeVar("R", Job, ExpenseRecord)


@dataclass(frozen=True, slots=True)
class CollectionMerge[T]:
    records: list[T]
    carried: int
    superseded: int
    dropped: int


@dataclass(frozen=True, slots=True)
class MergeResult:
    jobs: CollectionMerge[Job]
    expenses: CollectionMerge[ExpenseRecord]


def merge_collection(local: Sequence[R], remote: Sequence[R]) -> CollectionMerge[R]:
    """Reconcile one collection; see module docstring for the rules."""

    remote_ids = {r.id for r in remote}
    carried: list[R] = []
    superseded = 0
    dropped = 0
    for rec in local:
        if rec.is_synced:
            if rec.id not in remote_ids:
                dropped += 1
            continue
        if rec.id in remote_ids:
            superseded += 1
        else:
            carried.append(rec)
    return CollectionMerge(
        records=[*carried, *remote],
        carried=len(carried),
        superseded=superseded,
        dropped=dropped,
    )


def merge_snapshot(
    local_jobs: Sequence[Job],
    local_expenses: Sequence[ExpenseRecord],
    snapshot: RemoteSnapshot,
) -> MergeResult:
    return MergeResult(
        jobs=merge_collection(local_jobs, snapshot.jobs),
        expenses=merge_collection(local_expenses, snapshot.expenses),
    )


__all__ = ["CollectionMerge", "MergeResult", "merge_collection", "merge_snapshot"]
