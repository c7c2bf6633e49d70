"""Sync orchestrator: single-flight push and pull cycles over the local store.

Each direction has its own lock, a plain flag that is checked and set before
the first ``await``. Because everything runs on one event loop, no other task
can observe the flag between the check and the set. A trigger that finds its
direction in flight is dropped, not queued; the next natural trigger (the
timer after the next local write, a manual refresh) starts a new cycle.

Push cycle
    Requires a valid endpoint and an Admin user. Captures the unsynced Jobs and
    Expenses at cycle start, pushes Jobs first (expense rows reference job
    names), and marks each record synced right after its own push succeeds.
    A failed push leaves that record unsynced and the loop moves on.

Pull cycle
    Requires a valid endpoint. Fetches the remote snapshot; on failure the local
    state is left untouched. On success the snapshot is merged against the
    local collections as they are when the fetch returns, and both collections
    are replaced with the merge result.

No exception escapes a cycle. Each call returns a small report the UI layer
can turn into a status indicator.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .config import AppConfig
from .defaults import is_valid_endpoint
from .logging_setup import get_logger
from .merge import merge_snapshot
from .models import Collection, ExpenseRecord, Job, RecordKind
from .remote import RemoteSyncClient
from .store import LocalRecordStore

_logger = get_logger("contractorbook.sync")

type RemoteFactory = Callable[[str], RemoteSyncClient]


class Direction(StrEnum):
    PUSH = "push"
    PULL = "pull"


class SyncState(StrEnum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


class CycleOutcome(StrEnum):
    COMPLETED = "completed"
    NOTHING_TO_DO = "nothing_to_do"
    FAILED = "failed"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SKIPPED_OFFLINE = "skipped_offline"
    SKIPPED_UNAUTHORIZED = "skipped_unauthorized"


@dataclass(frozen=True, slots=True)
class PushReport:
    outcome: CycleOutcome
    attempted: int = 0
    succeeded: int = 0
    failed_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class PullReport:
    outcome: CycleOutcome
    jobs: int = 0
    expenses: int = 0
    carried: int = 0
    superseded: int = 0
    dropped: int = 0


@dataclass(frozen=True, slots=True)
class SyncStatus:
    push: SyncState
    pull: SyncState
    pending: int
    endpoint_configured: bool
    last_push: PushReport | None
    last_pull: PullReport | None

    @property
    def is_busy(self) -> bool:
        return SyncState.IN_FLIGHT in (self.push, self.pull)


class SyncOrchestrator:
    """Owns the push/pull locks and drives cycles against one store.

    Parameters
    ----------
    store:
        The local record store. The orchestrator only reads it and writes
        back through ``mark_synced``/``replace_all``.
    config:
        Timeouts, auto-push delay and acknowledgement mode.
    remote_factory:
        Builds a :class:`RemoteSyncClient` for the endpoint URL read at cycle
        start. The client is kept and reused until the endpoint changes or
        :meth:`close` is called. Tests inject clients bound to a stub session.
    """

    def __init__(
        self,
        store: LocalRecordStore,
        *,
        config: AppConfig | None = None,
        remote_factory: RemoteFactory | None = None,
    ) -> None:
        self._store = store
        self._config = config or AppConfig()
        self._remote_factory = remote_factory or self._default_remote
        self._in_flight: dict[Direction, bool] = {Direction.PUSH: False, Direction.PULL: False}
        self._scheduled: set[asyncio.Task[PushReport]] = set()
        self._last_push: PushReport | None = None
        self._last_pull: PullReport | None = None
        self._remote: RemoteSyncClient | None = None

    def _default_remote(self, url: str) -> RemoteSyncClient:
        return RemoteSyncClient(
            url,
            timeout=self._config.http_timeout,
            confirm_writes=self._config.confirm_writes,
        )

    def _client(self, url: str) -> RemoteSyncClient:
        """Return the client for ``url``, reusing its session across cycles.
        A changed endpoint closes the previous client."""

        if self._remote is not None and self._remote.endpoint_url == url:
            return self._remote
        self.close()
        self._remote = self._remote_factory(url)
        return self._remote

    def close(self) -> None:
        """Release the cached client's connection pool."""

        if self._remote is not None:
            self._remote.close()
            self._remote = None

    # ---- state ----------------------------------------------------------------

    def state(self, direction: Direction) -> SyncState:
        return SyncState.IN_FLIGHT if self._in_flight[direction] else SyncState.IDLE

    def pending_count(self) -> int:
        return self._store.pending_count()

    def status(self) -> SyncStatus:
        return SyncStatus(
            push=self.state(Direction.PUSH),
            pull=self.state(Direction.PULL),
            pending=self.pending_count(),
            endpoint_configured=is_valid_endpoint(self._store.endpoint_url()),
            last_push=self._last_push,
            last_pull=self._last_pull,
        )

    # ---- push -----------------------------------------------------------------

    async def push_cycle(self) -> PushReport:
        """Drain the unsynced records captured at cycle start.

        Every report, skips included, becomes ``status().last_push``.
        """

        report = await self._guarded_push()
        self._last_push = report
        return report

    async def _guarded_push(self) -> PushReport:
        if self._in_flight[Direction.PUSH]:
            return PushReport(CycleOutcome.SKIPPED_IN_FLIGHT)
        url = self._store.endpoint_url()
        if not is_valid_endpoint(url):
            return PushReport(CycleOutcome.SKIPPED_OFFLINE)
        user = self._store.current_user()
        if user is None or not user.is_admin:
            return PushReport(CycleOutcome.SKIPPED_UNAUTHORIZED)

        self._in_flight[Direction.PUSH] = True
        try:
            report = await self._run_push(url)
        except Exception as e:  # noqa: BLE001 - cycles never raise past this boundary
            _logger.exception("sync:push_cycle_crashed error=%s", e.__class__.__name__)
            report = PushReport(CycleOutcome.FAILED)
        finally:
            self._in_flight[Direction.PUSH] = False
        return report

    async def _run_push(self, url: str) -> PushReport:
        pending_jobs: list[Job] = self._store.unsynced(Collection.JOBS)
        pending_expenses: list[ExpenseRecord] = self._store.unsynced(Collection.EXPENSES)
        if not pending_jobs and not pending_expenses:
            return PushReport(CycleOutcome.NOTHING_TO_DO)

        # Job names for flattened expense rows, as of cycle start.
        job_context = self._store.jobs()
        client = self._client(url)
        _logger.info(
            "sync:push_start jobs=%d expenses=%d", len(pending_jobs), len(pending_expenses)
        )

        succeeded = 0
        failed: list[str] = []
        work: list[tuple[Collection, RecordKind, Job | ExpenseRecord]] = [
            *((Collection.JOBS, RecordKind.JOB, j) for j in pending_jobs),
            *((Collection.EXPENSES, RecordKind.EXPENSE_BATCH, e) for e in pending_expenses),
        ]
        for collection, kind, record in work:
            if await self._push_one(client, kind, record, job_context):
                self._store.mark_synced(collection, record.id, expected=record)
                succeeded += 1
            else:
                failed.append(record.id)

        _logger.info(
            "sync:push_done attempted=%d succeeded=%d failed=%d",
            len(work),
            succeeded,
            len(failed),
        )
        return PushReport(
            CycleOutcome.COMPLETED,
            attempted=len(work),
            succeeded=succeeded,
            failed_ids=tuple(failed),
        )

    async def _push_one(
        self,
        client: RemoteSyncClient,
        kind: RecordKind,
        record: Job | ExpenseRecord,
        job_context: list[Job],
    ) -> bool:
        try:
            return await client.push(kind, record, jobs=job_context)
        except Exception as e:  # noqa: BLE001 - one bad record must not stop the cycle
            _logger.warning(
                "sync:push_record_failed kind=%s id=%s error=%s",
                kind.value,
                record.id,
                e.__class__.__name__,
            )
            return False

    def schedule_push(self, delay: float | None = None) -> asyncio.Task[PushReport] | None:
        """Start a push cycle after ``delay`` seconds (config default).

        Returns ``None`` when called outside a running event loop; callers in
        synchronous contexts run :meth:`push_cycle` themselves.
        """

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _logger.debug("sync:schedule_push_skipped reason=no_running_loop")
            return None
        wait = self._config.sync_delay if delay is None else max(0.0, delay)
        task = loop.create_task(self._delayed_push(wait))
        self._scheduled.add(task)
        task.add_done_callback(self._scheduled.discard)
        return task

    async def _delayed_push(self, delay: float) -> PushReport:
        await asyncio.sleep(delay)
        return await self.push_cycle()

    async def wait_scheduled(self) -> None:
        """Wait for every push scheduled so far to finish."""

        while self._scheduled:
            tasks = list(self._scheduled)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._scheduled.difference_update(tasks)

    # ---- pull -----------------------------------------------------------------

    async def pull_cycle(self) -> PullReport:
        """Fetch the remote snapshot and merge it into the local store.

        Every report, skips included, becomes ``status().last_pull``.
        """

        report = await self._guarded_pull()
        self._last_pull = report
        return report

    async def _guarded_pull(self) -> PullReport:
        if self._in_flight[Direction.PULL]:
            return PullReport(CycleOutcome.SKIPPED_IN_FLIGHT)
        url = self._store.endpoint_url()
        if not is_valid_endpoint(url):
            return PullReport(CycleOutcome.SKIPPED_OFFLINE)

        self._in_flight[Direction.PULL] = True
        try:
            report = await self._run_pull(url)
        except Exception as e:  # noqa: BLE001 - cycles never raise past this boundary
            _logger.exception("sync:pull_cycle_crashed error=%s", e.__class__.__name__)
            report = PullReport(CycleOutcome.FAILED)
        finally:
            self._in_flight[Direction.PULL] = False
        return report

    async def _run_pull(self, url: str) -> PullReport:
        snapshot = await self._client(url).pull()
        if snapshot is None:
            return PullReport(CycleOutcome.FAILED)

        # Merge against the local state as it is now, after the fetch.
        result = merge_snapshot(self._store.jobs(), self._store.expenses(), snapshot)
        self._store.replace_all(Collection.JOBS, result.jobs.records)
        self._store.replace_all(Collection.EXPENSES, result.expenses.records)

        carried = result.jobs.carried + result.expenses.carried
        superseded = result.jobs.superseded + result.expenses.superseded
        dropped = result.jobs.dropped + result.expenses.dropped
        _logger.info(
            "sync:pull_merged jobs=%d expenses=%d carried=%d superseded=%d dropped=%d",
            len(result.jobs.records),
            len(result.expenses.records),
            carried,
            superseded,
            dropped,
        )
        return PullReport(
            CycleOutcome.COMPLETED,
            jobs=len(result.jobs.records),
            expenses=len(result.expenses.records),
            carried=carried,
            superseded=superseded,
            dropped=dropped,
        )

    # ---- probe ----------------------------------------------------------------

    async def test_connection(self) -> bool:
        """Send the connectivity probe to the configured endpoint."""

        url = self._store.endpoint_url()
        if not is_valid_endpoint(url):
            return False
        try:
            return await self._client(url).probe()
        except Exception as e:  # noqa: BLE001
            _logger.warning("sync:probe_failed error=%s", e.__class__.__name__)
            return False


__all__ = [
    "CycleOutcome",
    "Direction",
    "PullReport",
    "PushReport",
    "SyncOrchestrator",
    "SyncState",
    "SyncStatus",
]
