"""Runtime configuration read from the environment.

Entry points load a local ``.env`` (``python-dotenv``, never overriding values
already present) before calling :meth:`AppConfig.from_env`.

Variables
---------
``CONTRACTORBOOK_DATABASE_URL``
    SQLAlchemy URL of the local store. Default ``sqlite:///./contractorbook.db``.
``CONTRACTORBOOK_HTTP_TIMEOUT``
    Per-request timeout in seconds for webhook calls. Default ``30``.
``CONTRACTORBOOK_SYNC_DELAY``
    Seconds between a local write and the automatic push cycle. Default ``1.0``.
``CONTRACTORBOOK_CONFIRM_WRITES``
    When true (default), a push only counts as successful on a 2xx reply whose
    body is not an error message. When false, a dispatched request is enough.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_DATABASE_URL = "sqlite:///./contractorbook.db"
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_SYNC_DELAY = 1.0


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    try:
        value = float(raw) if raw else default
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = raw.strip().lower()
    if v in {"0", "false", "no", "off"}:
        return False
    if v in {"1", "true", "yes", "on"}:
        return True
    return default


@dataclass(frozen=True, slots=True)
class AppConfig:
    database_url: str = DEFAULT_DATABASE_URL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    sync_delay: float = DEFAULT_SYNC_DELAY
    confirm_writes: bool = True

    @classmethod
    def from_env(cls, *, database_url: str | None = None) -> AppConfig:
        """Build a config from environment variables; ``database_url`` wins
        over ``CONTRACTORBOOK_DATABASE_URL`` when given."""

        url = database_url or os.getenv("CONTRACTORBOOK_DATABASE_URL") or DEFAULT_DATABASE_URL
        return cls(
            database_url=url,
            http_timeout=_env_float("CONTRACTORBOOK_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            sync_delay=_env_float("CONTRACTORBOOK_SYNC_DELAY", DEFAULT_SYNC_DELAY),
            confirm_writes=_env_bool("CONTRACTORBOOK_CONFIRM_WRITES", True),
        )


__all__ = ["AppConfig", "DEFAULT_DATABASE_URL"]
