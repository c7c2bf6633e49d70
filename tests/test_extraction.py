from __future__ import annotations

import base64

import pytest

import contractorbook.extraction as extraction_mod
from contractorbook.errors import ReceiptExtractionError
from contractorbook.extraction import extract_receipt
from contractorbook.models import ExpenseRecord, Job
from tests.helpers.openai_stub import APIStatusErrorStub, OpenAIStub

IMAGE = b"\xff\xd8\xff-fake-jpeg"
JOBS = [Job(id="job-1", name="Living Room", address="123 Oak St")]


def _payload(**overrides):
    base = {
        "merchantName": "Home Depot",
        "date": "2025-05-04",
        "totalAmount": 107.994,
        "taxAmount": 8.0,
        "currency": "$",
        "category": "Materials",
        "notes": "Oak St job",
        "suggestedJobId": "job-1",
        "items": [
            {"description": "2x4 studs", "amount": 60},
            {"description": "Drywall screws", "amount": 40},
        ],
    }
    base.update(overrides)
    return base


def _install(monkeypatch: pytest.MonkeyPatch, stub: OpenAIStub) -> OpenAIStub:
    monkeypatch.setattr(extraction_mod, "OpenAI", stub.factory())
    monkeypatch.setattr(extraction_mod, "_sleep_backoff", lambda attempt: None)
    return stub


def test_happy_path_returns_validated_receipt(monkeypatch: pytest.MonkeyPatch):
    stub = _install(monkeypatch, OpenAIStub(_payload()))

    result = extract_receipt(IMAGE, mime_type="image/png", jobs=JOBS)

    assert result.merchant_name == "Home Depot"
    assert result.total_amount == 107.99
    assert result.category == "Materials"
    assert result.suggested_job_id == "job-1"
    assert [it.description for it in result.items] == ["2x4 studs", "Drywall screws"]

    (call,) = stub.calls
    assert call["text"]["format"]["type"] == "json_schema"
    assert call["text"]["format"]["strict"] is True
    image_part = call["input"][0]["content"][1]
    assert image_part["type"] == "input_image"
    assert image_part["image_url"] == (
        "data:image/png;base64," + base64.b64encode(IMAGE).decode("ascii")
    )
    assert "job-1 = Living Room" in call["instructions"]


def test_unknown_category_and_job_fall_back(monkeypatch: pytest.MonkeyPatch):
    _install(monkeypatch, OpenAIStub(_payload(category="Snacks", suggestedJobId="job-404")))

    result = extract_receipt(IMAGE, jobs=JOBS)

    assert result.category == "Other"
    assert result.suggested_job_id is None


def test_prefills_unsynced_record(monkeypatch: pytest.MonkeyPatch):
    _install(monkeypatch, OpenAIStub(_payload()))
    record = ExpenseRecord.from_extraction(extract_receipt(IMAGE, jobs=JOBS), image_url="r.jpg")
    assert record.job_id == "job-1"
    assert record.is_synced is False
    assert record.image_url == "r.jpg"
    assert record.items_total() == 100.0


def test_retries_rate_limit_then_succeeds(monkeypatch: pytest.MonkeyPatch):
    stub = _install(monkeypatch, OpenAIStub(_payload(), errors=[APIStatusErrorStub(429)]))
    assert extract_receipt(IMAGE).merchant_name == "Home Depot"
    assert len(stub.calls) == 2


def test_non_retryable_error_raises(monkeypatch: pytest.MonkeyPatch):
    stub = _install(monkeypatch, OpenAIStub(_payload(), errors=[APIStatusErrorStub(400)]))
    with pytest.raises(ReceiptExtractionError):
        extract_receipt(IMAGE)
    assert len(stub.calls) == 1


def test_gives_up_after_max_attempts(monkeypatch: pytest.MonkeyPatch):
    errors = [APIStatusErrorStub(503) for _ in range(5)]
    stub = _install(monkeypatch, OpenAIStub(_payload(), errors=errors))
    with pytest.raises(ReceiptExtractionError):
        extract_receipt(IMAGE)
    assert len(stub.calls) == extraction_mod._MAX_ATTEMPTS


@pytest.mark.parametrize("output", ["not json", "[1, 2]", ""])
def test_bad_model_output_raises(monkeypatch: pytest.MonkeyPatch, output: str):
    _install(monkeypatch, OpenAIStub(output))
    with pytest.raises(ReceiptExtractionError):
        extract_receipt(IMAGE)


def test_empty_image_is_rejected_before_any_call(monkeypatch: pytest.MonkeyPatch):
    stub = _install(monkeypatch, OpenAIStub(_payload()))
    with pytest.raises(ReceiptExtractionError):
        extract_receipt(b"")
    assert stub.calls == []
