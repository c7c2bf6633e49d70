"""Test helpers to stub the OpenAI Responses client used by extraction.py.

The stub returns a fixed receipt payload (or raises queued errors first) and
records each ``responses.create`` call's kwargs so tests can assert on the
instructions, the image part, and the JSON schema that were sent.
"""

from __future__ import annotations

import json
from typing import Any


class APIStatusErrorStub(Exception):
    """Carries ``status_code`` the way ``openai.APIStatusError`` does."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class OpenAIStub:
    """Minimal stub matching the ``openai.OpenAI`` shape for ``extraction.py``.

    Parameters
    ----------
    payload:
        Decoded JSON object returned as ``output_text``; a ``str`` is returned
        verbatim (for malformed-output tests).
    errors:
        Exceptions raised by the first calls, in order, before the payload is
        returned.
    """

    def __init__(
        self, payload: dict[str, Any] | str, errors: list[Exception] | None = None
    ) -> None:
        self._payload = payload
        self._errors = list(errors or [])
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: OpenAIStub) -> None:
                self._outer = outer

            def create(self, **kwargs):
                self._outer.calls.append(kwargs)
                if self._outer._errors:
                    raise self._outer._errors.pop(0)

                class _Resp:
                    output_text: str

                resp = _Resp()
                p = self._outer._payload
                resp.output_text = p if isinstance(p, str) else json.dumps(p)
                return resp

        self.responses = _Responses(self)

    def factory(self):
        """Return a callable usable in place of ``openai.OpenAI``."""

        return lambda *a, **kw: self
