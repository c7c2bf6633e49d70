"""Remote sync client for the spreadsheet webhook endpoint.

Two operations against one configured URL:

- :meth:`RemoteSyncClient.push` sends one record (tagged job/expense batch/
  probe) and reports success as a boolean.
- :meth:`RemoteSyncClient.pull` fetches the full remote snapshot, or returns
  ``None`` on any failure.

Neither operation raises. An invalid or empty endpoint short-circuits both to
failure without any request.

Acknowledgement
---------------
With ``confirm_writes=True`` (default) a push succeeds only on a 2xx status
whose text body is not an ``Error: ...`` reply from the script. With
``confirm_writes=False`` a push succeeds as soon as the request was dispatched
without a transport error; the response is not inspected. In both modes the
endpoint may still drop a write silently; only a later pull can show it.

HTTP calls use a ``requests.Session`` and run through ``asyncio.to_thread``
so the event loop stays free while a request is outstanding.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Iterable
from typing import Any

import requests

from .config import DEFAULT_HTTP_TIMEOUT
from .defaults import is_valid_endpoint
from .errors import RemoteResponseError
from .logging_setup import get_logger
from .models import ExpenseRecord, Job, RecordKind, RemoteSnapshot
from .wire import build_payload, parse_snapshot

_logger = get_logger("contractorbook.remote")

_PUSH_HEADERS = {"Content-Type": "text/plain;charset=utf-8"}


def _record_id(record: Job | ExpenseRecord | None) -> str:
    return getattr(record, "id", "") or "-"


class RemoteSyncClient:
    """Client bound to a single webhook URL.

    Parameters
    ----------
    endpoint_url:
        The configured web-app URL. Validated on every call.
    session:
        Optional ``requests.Session`` (tests pass a stub with the same
        ``get``/``post`` shape).
    timeout:
        Per-request timeout in seconds.
    confirm_writes:
        See module docstring.
    """

    def __init__(
        self,
        endpoint_url: str,
        *,
        session: requests.Session | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        confirm_writes: bool = True,
    ) -> None:
        self.endpoint_url = (endpoint_url or "").strip()
        self._session = session or requests.Session()
        self._timeout = timeout
        self._confirm_writes = confirm_writes

    @property
    def is_configured(self) -> bool:
        return is_valid_endpoint(self.endpoint_url)

    # ---- push ---------------------------------------------------------------

    async def push(
        self,
        kind: RecordKind,
        record: Job | ExpenseRecord | None = None,
        *,
        jobs: Iterable[Job] = (),
    ) -> bool:
        """Send one record to the remote store; ``True`` on success."""

        if not self.is_configured:
            _logger.debug("remote:push_skipped reason=invalid_endpoint kind=%s", kind.value)
            return False
        try:
            payload = build_payload(kind, record, jobs=jobs)
        except (TypeError, ValueError) as e:
            _logger.error(
                "remote:push_bad_record kind=%s id=%s error=%s", kind.value, _record_id(record), e
            )
            return False

        body = json.dumps(payload, ensure_ascii=False)
        try:
            ok = await asyncio.to_thread(self._post, body)
        except requests.RequestException as e:
            _logger.warning(
                "remote:push_transport_failed kind=%s id=%s error=%s",
                kind.value,
                _record_id(record),
                e.__class__.__name__,
            )
            return False
        except RemoteResponseError as e:
            _logger.warning(
                "remote:push_rejected kind=%s id=%s error=%s", kind.value, _record_id(record), e
            )
            return False

        _logger.debug("remote:push_ok kind=%s id=%s", kind.value, _record_id(record))
        return ok

    async def probe(self) -> bool:
        """Send the ``{"type": "test"}`` connectivity probe."""

        return await self.push(RecordKind.TEST)

    def _post(self, body: str) -> bool:
        resp = self._session.post(
            self.endpoint_url,
            data=body.encode("utf-8"),
            headers=_PUSH_HEADERS,
            timeout=self._timeout,
        )
        if not self._confirm_writes:
            return True
        status = getattr(resp, "status_code", 0)
        if not 200 <= status < 300:
            raise RemoteResponseError(f"HTTP {status}")
        text = (getattr(resp, "text", "") or "").strip()
        if text.lower().startswith("error"):
            raise RemoteResponseError(text[:200])
        return True

    # ---- pull ---------------------------------------------------------------

    async def pull(self) -> RemoteSnapshot | None:
        """Fetch and parse the full remote snapshot; ``None`` on any failure."""

        if not self.is_configured:
            _logger.debug("remote:pull_skipped reason=invalid_endpoint")
            return None
        try:
            body = await asyncio.to_thread(self._get_json)
            snapshot = parse_snapshot(body)
        except requests.RequestException as e:
            _logger.warning("remote:pull_transport_failed error=%s", e.__class__.__name__)
            return None
        except RemoteResponseError as e:
            _logger.warning("remote:pull_bad_response error=%s", e)
            return None

        _logger.info(
            "remote:pull_ok jobs=%d expenses=%d", len(snapshot.jobs), len(snapshot.expenses)
        )
        return snapshot

    def _get_json(self) -> Any:
        resp = self._session.get(
            self.endpoint_url,
            headers={"Cache-Control": "no-cache"},
            timeout=self._timeout,
            allow_redirects=True,
        )
        status = getattr(resp, "status_code", 0)
        if not 200 <= status < 300:
            raise RemoteResponseError(f"HTTP {status}")
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteResponseError("pull body is not JSON") from e

    def close(self) -> None:
        self._session.close()


__all__ = ["RemoteSyncClient"]
