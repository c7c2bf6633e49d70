"""Receipt extraction through the OpenAI Responses API.

Public API:
    - :func:`extract_receipt`

One request per receipt: image bytes in, :class:`ExtractedReceipt` out. The
model answers under a strict JSON schema. A category outside the configured
list is replaced by ``"Other"``; a suggested job id that is not one of the
known jobs is dropped. Any failure raises
:class:`~contractorbook.errors.ReceiptExtractionError`.

No side effects occur at import time (no client creation, no environment
reads).
"""

from __future__ import annotations

import base64
import json
import random
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from openai import OpenAI
from pydantic import ValidationError

from .defaults import DEFAULT_CATEGORIES, FALLBACK_CATEGORY
from .errors import ReceiptExtractionError
from .logging_setup import get_logger
from .models import ExtractedReceipt, Job, ReceiptItem

_MODEL: str = "gpt-5"
_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("contractorbook.extraction")


def _nullable(t: str) -> dict[str, Any]:
    return {"type": [t, "null"]}


RECEIPT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "merchantName": {"type": "string"},
        "date": {"type": "string", "description": "Purchase date, ISO YYYY-MM-DD when legible"},
        "totalAmount": {"type": "number"},
        "taxAmount": {"type": "number"},
        "currency": {"type": "string", "description": "Currency symbol, e.g. $"},
        "category": {"type": "string"},
        "notes": {
            "type": "string",
            "description": "Handwritten notes, project references or other useful details",
        },
        "suggestedJobId": _nullable("string"),
        "items": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "description": {"type": "string"},
                    "amount": {"type": "number"},
                },
                "required": ["description", "amount"],
            },
        },
    },
    "required": [
        "merchantName",
        "date",
        "totalAmount",
        "taxAmount",
        "currency",
        "category",
        "notes",
        "suggestedJobId",
        "items",
    ],
}


def build_instructions(categories: Sequence[str], jobs: Sequence[Job]) -> str:
    lines = [
        "Analyze this receipt image for contractor bookkeeping.",
        "Extract the merchant name, date, total amount, tax, and the list of line items.",
        f"Choose the most appropriate category from: {', '.join(categories)}.",
        "Put handwritten notes, project references or other notable details in 'notes'.",
    ]
    if jobs:
        listing = "; ".join(f"{j.id} = {j.name} ({j.address})" for j in jobs)
        lines.append(
            "If the receipt clearly refers to one of these projects, set suggestedJobId to its "
            f"id, otherwise null: {listing}."
        )
    else:
        lines.append("Set suggestedJobId to null.")
    lines.append("Return JSON only, following the schema.")
    return "\n".join(lines)


def _create_client() -> OpenAI:
    return OpenAI()


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    base = _BACKOFF_SCHEDULE_SEC[min(attempt_no - 1, len(_BACKOFF_SCHEDULE_SEC) - 1)]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _response_text(resp: Any) -> str:
    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                text = getattr(content[0], "text", None)
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ReceiptExtractionError("Unexpected Responses API shape; no text output")
    return text


def _materialize(
    decoded: Mapping[str, Any], *, categories: Sequence[str], job_ids: set[str]
) -> ExtractedReceipt:
    category = str(decoded.get("category") or "").strip()
    if category not in categories:
        category = FALLBACK_CATEGORY
    suggested = decoded.get("suggestedJobId")
    if suggested not in job_ids:
        suggested = None
    raw_items = decoded.get("items") or []
    if not isinstance(raw_items, list):
        raise ReceiptExtractionError("'items' is not a list")
    try:
        return ExtractedReceipt(
            merchant_name=str(decoded.get("merchantName") or "").strip(),
            date=str(decoded.get("date") or "").strip(),
            total_amount=decoded.get("totalAmount"),
            tax_amount=decoded.get("taxAmount"),
            currency=str(decoded.get("currency") or "$").strip() or "$",
            category=category,
            notes=str(decoded.get("notes") or "").strip(),
            items=tuple(
                ReceiptItem(description=str(it.get("description") or ""), amount=it.get("amount"))
                for it in raw_items
                if isinstance(it, Mapping)
            ),
            suggested_job_id=suggested,
        )
    except ValidationError as e:
        raise ReceiptExtractionError(f"extracted receipt failed validation: {e}") from e


def extract_receipt(
    image: bytes,
    *,
    mime_type: str = "image/jpeg",
    categories: Sequence[str] = DEFAULT_CATEGORIES,
    jobs: Iterable[Job] = (),
) -> ExtractedReceipt:
    """Extract structured fields from a receipt photo.

    Parameters
    ----------
    image:
        Raw image bytes.
    mime_type:
        MIME type used in the data URL sent to the model.
    categories:
        Allowed categories; anything else becomes ``"Other"``.
    jobs:
        Known jobs the model may match the receipt against.
    """

    if not image:
        raise ReceiptExtractionError("empty image")

    job_list = list(jobs)
    cats = list(categories) or [FALLBACK_CATEGORY]
    data_url = f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"
    instructions = build_instructions(cats, job_list)

    client = _create_client()
    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            resp = client.responses.create(
                model=_MODEL,
                instructions=instructions,
                input=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "input_text", "text": "Extract this receipt."},
                            {"type": "input_image", "image_url": data_url},
                        ],
                    }
                ],
                text={
                    "format": {
                        "type": "json_schema",
                        "name": "receipt",
                        "schema": RECEIPT_SCHEMA,
                        "strict": True,
                    }
                },
            )
            break
        except Exception as e:  # noqa: BLE001
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                _logger.error(
                    "extraction:failed_terminal latency_ms=%.2f error=%s",
                    dt_ms,
                    e.__class__.__name__,
                )
                raise ReceiptExtractionError(f"receipt extraction failed: {e}") from e
            _logger.warning(
                "extraction:retry latency_ms=%.2f error=%s attempt=%d",
                dt_ms,
                e.__class__.__name__,
                attempt,
            )
            _sleep_backoff(attempt)
            attempt += 1

    try:
        decoded = json.loads(_response_text(resp))
    except json.JSONDecodeError as e:
        raise ReceiptExtractionError("model output was not valid JSON") from e
    if not isinstance(decoded, Mapping):
        raise ReceiptExtractionError("model output is not a JSON object")

    result = _materialize(decoded, categories=cats, job_ids={j.id for j in job_list})
    _logger.info(
        "extraction:done merchant=%r items=%d category=%s",
        result.merchant_name,
        len(result.items),
        result.category,
    )
    return result


__all__ = ["RECEIPT_SCHEMA", "build_instructions", "extract_receipt"]
