"""
Telemetry bootstrap for the expense service.

`setup_telemetry` installs the JSON log handler and, when ENABLE_TELEMETRY is on,
OpenTelemetry tracing for inbound FastAPI requests plus the outbound httpx calls
the OpenAI SDK makes. Every log record carries the request ID and the pipeline
stage (transcription, extraction, persistence) that emitted it; `pipeline_stage`
also opens one span per stage so a slow upload can be attributed.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import Any, Iterator, Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode
from pythonjsonlogger import jsonlogger

CORRELATION_ID_HEADER = "x-request-id"
DEFAULT_OTLP_ENDPOINT = "http://localhost:4318/v1/traces"
LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s %(message)s "
    "%(service_name)s %(request_id)s %(pipeline_stage)s %(trace_id)s %(span_id)s"
)
RequestContextToken = Token

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_pipeline_stage: ContextVar[Optional[str]] = ContextVar("pipeline_stage", default=None)
_installed = {"logging": False, "httpx": False}
_tracer = trace.get_tracer("expense_service.pipeline")


@dataclass(frozen=True, slots=True)
class TelemetryConfig:
    service_name: str
    traces_enabled: bool
    console_export: bool
    otlp_endpoint: str
    log_level: int


def load_telemetry_config(service_name: str) -> TelemetryConfig:
    """Read ENABLE_TELEMETRY, OTEL_* and LOG_LEVEL; unknown levels fall back to INFO."""

    level = logging.getLevelName((os.getenv("LOG_LEVEL") or "INFO").strip().upper())
    return TelemetryConfig(
        service_name=os.getenv("OTEL_SERVICE_NAME") or service_name,
        traces_enabled=_parse_bool(os.getenv("ENABLE_TELEMETRY", "false")),
        console_export=_parse_bool(os.getenv("OTEL_CONSOLE_EXPORT", "false")),
        otlp_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT") or DEFAULT_OTLP_ENDPOINT,
        log_level=level if isinstance(level, int) else logging.INFO,
    )


def setup_telemetry(app: FastAPI, service_name: str) -> TelemetryConfig:
    """
    Configure logging and (optionally) tracing for the expense service app.

    Safe to call more than once; handlers and instrumentors are installed once
    per process.
    """

    config = load_telemetry_config(service_name)
    _configure_logging(config)

    if config.traces_enabled:
        _configure_tracing(config)
        FastAPIInstrumentor.instrument_app(app)
        if not _installed["httpx"]:
            HTTPXClientInstrumentor().instrument()
            _installed["httpx"] = True
        LoggingInstrumentor().instrument(set_logging_format=False)

    return config


def ensure_request_id(request: Request | None, header_name: str = CORRELATION_ID_HEADER) -> str:
    """Reuse the caller's x-request-id (or one already on request.state); otherwise mint one."""

    if request is not None:
        existing = request.headers.get(header_name) or getattr(request.state, "request_id", None)
        if existing:
            request.state.request_id = existing
            return existing

    request_id = os.getenv("REQUEST_ID_PREFIX", "") + str(uuid4())
    if request is not None:
        request.state.request_id = request_id
    return request_id


def bind_request_context(request_id: str | None) -> RequestContextToken:
    return _request_id.set(request_id)


def reset_request_context(token: RequestContextToken | None) -> None:
    if token is not None:
        _request_id.reset(token)


def current_pipeline_stage() -> Optional[str]:
    return _pipeline_stage.get()


@contextmanager
def pipeline_stage(stage: str, **attributes: Any) -> Iterator[Span]:
    """
    Tag logs with `stage` and wrap the block in a `pipeline.<stage>` span.

    The span is a no-op unless tracing is enabled. Exceptions are recorded on
    the span and re-raised.
    """

    token = _pipeline_stage.set(stage)
    try:
        with _tracer.start_as_current_span(f"pipeline.{stage}", record_exception=False) as span:
            for key, value in attributes.items():
                if value is not None:
                    span.set_attribute(f"expense.{key}", value)
            try:
                yield span
            except BaseException as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, type(exc).__name__))
                raise
    finally:
        _pipeline_stage.reset(token)


def _configure_logging(config: TelemetryConfig) -> None:
    if _installed["logging"]:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(_ContextLogFilter(config.service_name, config.traces_enabled))
    logging.basicConfig(level=config.log_level, handlers=[handler], force=True)
    _installed["logging"] = True


def _configure_tracing(config: TelemetryConfig) -> None:
    if isinstance(trace.get_tracer_provider(), TracerProvider):
        return

    provider = TracerProvider(resource=Resource.create({SERVICE_NAME: config.service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint)))
    if config.console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def _parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class _ContextLogFilter(logging.Filter):
    """Stamps service, request, stage and (when tracing) span IDs onto each record."""

    def __init__(self, service_name: str, traces_enabled: bool) -> None:
        super().__init__()
        self._service_name = service_name
        self._traces_enabled = traces_enabled

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self._service_name
        record.request_id = _request_id.get()
        record.pipeline_stage = _pipeline_stage.get()
        record.trace_id = None
        record.span_id = None

        if self._traces_enabled:
            span_context = trace.get_current_span().get_span_context()
            if span_context.is_valid:
                record.trace_id = format(span_context.trace_id, "032x")
                record.span_id = format(span_context.span_id, "016x")
        return True
