"""contractorbook: offline-first contractor expense book.

Public API
----------
- :class:`~contractorbook.service.ContractorBook` (application actions)
- :class:`~contractorbook.store.LocalRecordStore`
- :class:`~contractorbook.remote.RemoteSyncClient`
- :class:`~contractorbook.sync.SyncOrchestrator`
- :func:`~contractorbook.merge.merge_snapshot`
- Record models in :mod:`contractorbook.models`
"""

from __future__ import annotations

from .config import AppConfig
from .errors import (
    ContractorBookError,
    EndpointConfigError,
    ReceiptExtractionError,
    RemoteResponseError,
)
from .merge import merge_collection, merge_snapshot
from .models import (
    Collection,
    ExpenseRecord,
    ExtractedReceipt,
    Job,
    JobStatus,
    ReceiptItem,
    RecordKind,
    RemoteSnapshot,
    UserAccount,
    UserRole,
)
from .remote import RemoteSyncClient
from .service import ContractorBook
from .store import LocalRecordStore
from .sync import CycleOutcome, PullReport, PushReport, SyncOrchestrator, SyncStatus

__all__ = [
    "AppConfig",
    "Collection",
    "ContractorBook",
    "ContractorBookError",
    "CycleOutcome",
    "EndpointConfigError",
    "ExpenseRecord",
    "ExtractedReceipt",
    "Job",
    "JobStatus",
    "LocalRecordStore",
    "PullReport",
    "PushReport",
    "ReceiptExtractionError",
    "ReceiptItem",
    "RecordKind",
    "RemoteResponseError",
    "RemoteSnapshot",
    "RemoteSyncClient",
    "SyncOrchestrator",
    "SyncStatus",
    "UserAccount",
    "UserRole",
    "merge_collection",
    "merge_snapshot",
]
