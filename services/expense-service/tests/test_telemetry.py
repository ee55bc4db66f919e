from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import pytest

from expense_model import Expense, ListParams, Page, RawExpense
from listing import build_page
from pipeline import ExpensePipeline
from shared.observability.privacy import hash_payload, text_fingerprint
from shared.observability.telemetry import (
    _ContextLogFilter,
    bind_request_context,
    current_pipeline_stage,
    ensure_request_id,
    load_telemetry_config,
    pipeline_stage,
    reset_request_context,
)


class StageRecordingTranscriber:
    name = "recording"

    def __init__(self) -> None:
        self.stages: List[Optional[str]] = []

    def transcribe(self, audio_path: str) -> str:
        self.stages.append(current_pipeline_stage())
        return "1 pan 10"


class StageRecordingExtractor:
    name = "recording"

    def __init__(self) -> None:
        self.stages: List[Optional[str]] = []

    def extract(self, text: str) -> List[RawExpense]:
        self.stages.append(current_pipeline_stage())
        return [RawExpense(unit_price=Decimal("10"), quantity=Decimal("1"), unit="", description="pan")]


class StageRecordingStore:
    def __init__(self) -> None:
        self.stages: List[Optional[str]] = []

    def create(self, expense: Expense) -> None:
        self.stages.append(current_pipeline_stage())

    def get(self, expense_id: str) -> Optional[Expense]:
        return None

    def list(self, params: ListParams) -> Page:
        return build_page([], params, 0)


def test_load_telemetry_config_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ("ENABLE_TELEMETRY", "OTEL_CONSOLE_EXPORT", "OTEL_SERVICE_NAME", "OTEL_EXPORTER_OTLP_ENDPOINT"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    config = load_telemetry_config("expense-service")

    assert config.service_name == "expense-service"
    assert config.traces_enabled is False
    assert config.log_level == logging.INFO
    assert config.otlp_endpoint == "http://localhost:4318/v1/traces"


def test_load_telemetry_config_reads_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENABLE_TELEMETRY", "yes")
    monkeypatch.setenv("OTEL_SERVICE_NAME", "expense-service-staging")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = load_telemetry_config("expense-service")

    assert config.traces_enabled is True
    assert config.service_name == "expense-service-staging"
    assert config.log_level == logging.DEBUG


def test_pipeline_stage_is_scoped_and_reraises() -> None:
    assert current_pipeline_stage() is None

    with pytest.raises(ValueError):
        with pipeline_stage("extraction", provider="mock"):
            assert current_pipeline_stage() == "extraction"
            raise ValueError("bad reply")

    assert current_pipeline_stage() is None


def test_log_filter_stamps_request_and_stage() -> None:
    record = logging.LogRecord("pipeline", logging.INFO, __file__, 1, {"event": "x"}, None, None)
    token = bind_request_context("req-123")
    try:
        with pipeline_stage("persistence"):
            assert _ContextLogFilter("expense-service", traces_enabled=False).filter(record)
    finally:
        reset_request_context(token)

    assert record.service_name == "expense-service"
    assert record.request_id == "req-123"
    assert record.pipeline_stage == "persistence"
    assert record.trace_id is None


def test_ensure_request_id_without_request_honours_prefix(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REQUEST_ID_PREFIX", "exp-")

    assert ensure_request_id(None).startswith("exp-")


def test_worker_threads_see_the_running_stage() -> None:
    transcriber = StageRecordingTranscriber()
    extractor = StageRecordingExtractor()
    store = StageRecordingStore()
    pipeline = ExpensePipeline(transcriber, extractor, store, clock=lambda: datetime(2026, 2, 22, tzinfo=timezone.utc))

    asyncio.run(pipeline.process_audio("note.m4a"))

    assert transcriber.stages == ["transcription"]
    assert extractor.stages == ["extraction"]
    assert store.stages == ["persistence"]
    assert current_pipeline_stage() is None


def test_text_fingerprint_hides_the_text() -> None:
    fingerprint = text_fingerprint("tres kilos de papas")

    assert fingerprint == {"length": 19, "sha256": hash_payload("tres kilos de papas")}
    assert "papas" not in str(fingerprint)
    assert text_fingerprint(None) == {"length": 0, "sha256": hash_payload("")}
