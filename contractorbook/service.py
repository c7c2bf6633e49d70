"""Application actions on top of the store and the sync orchestrator.

:class:`ContractorBook` is what a UI (the CLI here) talks to. Every local
write goes through the store first and is durable-or-logged before anything
touches the network; pushes happen later, on the orchestrator's schedule.

Role rules
----------
Job create/edit/delete, expense deletion, endpoint changes and manual sync
require an Admin.
For any other user these calls are silent no-ops that return ``None`` or
``False``. Expense capture is open to every signed-in user; the automatic
push that follows still only runs for an Admin.
"""

from __future__ import annotations

from typing import Any

from .config import AppConfig
from .defaults import BUILTIN_ACCOUNTS, is_valid_endpoint
from .errors import EndpointConfigError
from .logging_setup import get_logger
from .models import (
    Collection,
    ExpenseRecord,
    ExtractedReceipt,
    Job,
    JobStatus,
    UserAccount,
    UserRole,
    reconcile_total,
)
from .store import LocalRecordStore
from .sync import PullReport, PushReport, RemoteFactory, SyncOrchestrator, SyncStatus

_logger = get_logger("contractorbook.service")


class ContractorBook:
    """User-facing operations for one local database.

    Parameters
    ----------
    store:
        Existing store; built from ``config.database_url`` when omitted.
    config:
        Runtime configuration (defaults to :meth:`AppConfig.from_env`).
    remote_factory:
        Passed through to :class:`SyncOrchestrator`.
    """

    def __init__(
        self,
        store: LocalRecordStore | None = None,
        *,
        config: AppConfig | None = None,
        remote_factory: RemoteFactory | None = None,
    ) -> None:
        self.config = config or AppConfig.from_env()
        self.store = store or LocalRecordStore(database_url=self.config.database_url)
        self.sync = SyncOrchestrator(
            self.store, config=self.config, remote_factory=remote_factory
        )

    # ---- session --------------------------------------------------------------

    @property
    def user(self) -> UserAccount | None:
        return self.store.current_user()

    @property
    def is_admin(self) -> bool:
        u = self.user
        return u is not None and u.is_admin

    def login(self, role: UserRole) -> UserAccount:
        account = BUILTIN_ACCOUNTS[UserRole(role)]
        self.store.set_current_user(account)
        _logger.info("service:login user=%s role=%s", account.id, account.role.value)
        return account

    def logout(self) -> None:
        self.store.set_current_user(None)

    def _denied(self, action: str) -> bool:
        if self.is_admin:
            return False
        _logger.debug("service:denied action=%s", action)
        return True

    # ---- jobs -----------------------------------------------------------------

    def new_job(
        self,
        name: str,
        *,
        client: str = "",
        address: str = "",
        contact_name: str = "",
        phone: str = "",
        email: str = "",
        budget: float = 0.0,
        status: JobStatus = JobStatus.ACTIVE,
    ) -> Job:
        """Build an unsaved job with a fresh id."""

        return Job(
            name=name.strip(),
            client=client,
            address=address,
            contact_name=contact_name,
            phone=phone,
            email=email,
            budget=budget,
            status=status,
        )

    def save_job(self, job: Job) -> Job | None:
        if self._denied("save_job"):
            return None
        saved = job.with_local_change()
        self.store.upsert(Collection.JOBS, saved)
        self.sync.schedule_push(self._job_delay())
        return saved

    def update_job(self, job_id: str, **changes: Any) -> Job | None:
        if self._denied("update_job"):
            return None
        current = self.store.get(Collection.JOBS, job_id)
        if current is None:
            return None
        changes.pop("id", None)
        return self.save_job(Job.model_validate({**current.model_dump(), **changes}))

    def delete_job(self, job_id: str) -> bool:
        """Remove a job locally. The remote copy is not deleted."""

        if self._denied("delete_job"):
            return False
        if self.store.get(Collection.JOBS, job_id) is None:
            return False
        self.store.remove(Collection.JOBS, job_id)
        return True

    # ---- expenses -------------------------------------------------------------

    def new_expense_from_extraction(
        self,
        data: ExtractedReceipt,
        *,
        job_id: str | None = None,
        image_url: str | None = None,
    ) -> ExpenseRecord:
        """Pre-fill an unsaved record from an extraction result.

        The job falls back to the model's suggestion, then to the first active
        job.
        """

        chosen = job_id or data.suggested_job_id or self._first_active_job_id()
        return ExpenseRecord.from_extraction(data, job_id=chosen, image_url=image_url)

    def save_expense(self, record: ExpenseRecord, *, sync: bool = True) -> ExpenseRecord | None:
        if self.user is None:
            return None
        saved = record.with_local_change()
        self.store.upsert(Collection.EXPENSES, saved)
        if sync:
            self.sync.schedule_push()
        return saved

    def update_expense(
        self, record_id: str, *, sync: bool = True, **changes: Any
    ) -> ExpenseRecord | None:
        """Edit fields of a stored expense (items included) and save it as pending.

        Changes are validated like a new record; ``id`` and ``timestamp`` are
        kept. Returns ``None`` for an unknown id or when nobody is signed in.
        """

        current = self.store.get(Collection.EXPENSES, record_id)
        if current is None:
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "timestamp")}
        edited = ExpenseRecord.model_validate({**current.model_dump(), **changes})
        return self.save_expense(edited, sync=sync)

    def reconcile_expense(self, record_id: str) -> ExpenseRecord | None:
        """Set the total to the sum of the line items and save."""

        current = self.store.get(Collection.EXPENSES, record_id)
        if current is None:
            return None
        return self.save_expense(reconcile_total(current))

    def delete_expense(self, record_id: str) -> bool:
        """Remove an expense locally. The remote rows are not deleted."""

        if self._denied("delete_expense"):
            return False
        if self.store.get(Collection.EXPENSES, record_id) is None:
            return False
        self.store.remove(Collection.EXPENSES, record_id)
        return True

    # ---- endpoint and sync ----------------------------------------------------

    async def set_endpoint(self, url: str) -> PullReport | None:
        """Store a new webhook URL and pull from it.

        An empty URL clears the endpoint (back to offline). Anything else must
        be an executable web-app URL or :class:`EndpointConfigError` is raised
        and nothing is stored. Admin only; other users get ``None``.
        """

        if self._denied("set_endpoint"):
            return None
        cleaned = (url or "").strip()
        if cleaned and not is_valid_endpoint(cleaned):
            raise EndpointConfigError(
                "expected https://script.google.com/macros/s/<deployment-id>/exec"
            )
        self.store.set_endpoint_url(cleaned)
        if not cleaned:
            return None
        return await self.sync.pull_cycle()

    async def test_connection(self) -> bool:
        return await self.sync.test_connection()

    async def sync_now(self) -> PushReport | None:
        """Manual push; Admin only."""

        if self._denied("sync_now"):
            return None
        return await self.sync.push_cycle()

    async def refresh(self) -> PullReport:
        return await self.sync.pull_cycle()

    def status(self) -> SyncStatus:
        return self.sync.status()

    def close(self) -> None:
        self.sync.close()

    # ---- internals ------------------------------------------------------------

    def _job_delay(self) -> float:
        # Job saves push a little sooner than expense saves.
        return self.config.sync_delay / 2

    def _first_active_job_id(self) -> str:
        for job in self.store.jobs():
            if job.status is JobStatus.ACTIVE:
                return job.id
        return ""


__all__ = ["ContractorBook"]
