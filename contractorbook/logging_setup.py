"""Logging for ``contractorbook``.

Modules log through ``get_logger("contractorbook.<module>")`` and never add
handlers themselves. Output is switched on once per process by
:func:`configure_logging`, which the CLI calls from its root callback.

Sync cycles run HTTP calls through ``requests`` (``urllib3``) and receipt
extraction through ``openai`` (``httpx``); their loggers are held at WARNING
so a DEBUG run shows our own cycle events rather than connection-pool chatter.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterable
from typing import IO

ROOT_LOGGER = "contractorbook"
LEVEL_ENV_VAR = "CONTRACTORBOOK_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
NOISY_LOGGERS: tuple[str, ...] = ("urllib3", "httpx", "httpcore", "openai")

_configured = False


def resolve_level(level: int | str | None = None) -> int:
    """Turn ``level`` (or ``$CONTRACTORBOOK_LOG_LEVEL`` when ``None``) into a
    numeric level. Unknown names resolve to INFO."""

    if level is None:
        level = os.getenv(LEVEL_ENV_VAR) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    value = logging.getLevelNamesMapping().get(name)
    return value if value is not None else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    fmt: str | None = None,
    stream: IO[str] | None = None,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> None:
    """Attach one stream handler to the ``contractorbook`` logger.

    Calling it again is a no-op, so entry points can call it unconditionally.

    Parameters
    ----------
    level:
        Level as ``int`` or name; ``None`` reads ``CONTRACTORBOOK_LOG_LEVEL``
        and falls back to INFO.
    fmt:
        Format string, default :data:`DEFAULT_FORMAT`.
    stream:
        Destination, default ``sys.stderr`` at call time.
    quiet:
        Third-party loggers raised to WARNING.
    """

    global _configured
    if _configured:
        return

    resolved = resolve_level(level)
    root = logging.getLogger(ROOT_LOGGER)
    for h in [h for h in root.handlers if isinstance(h, logging.NullHandler)]:
        root.removeHandler(h)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(fmt or DEFAULT_FORMAT))
    handler.setLevel(resolved)
    root.addHandler(handler)
    root.setLevel(resolved)
    root.propagate = False

    for name in quiet:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))

    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``; until :func:`configure_logging` has
    run, the package root carries a ``NullHandler`` so nothing is printed."""

    root = logging.getLogger(ROOT_LOGGER)
    if not _configured and not any(isinstance(h, logging.NullHandler) for h in root.handlers):
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
