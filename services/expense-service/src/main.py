"""
Expense Service turns short voice notes into stored expense records and serves a
paginated, ordered view of everything recorded so far.
"""

import logging
import os
import re
import sys
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

SRC_DIR = Path(__file__).resolve().parent
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

SERVICES_ROOT = SRC_DIR.parents[1]
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from errors import (  # noqa: E402
    ExpenseServiceError,
    ExtractionFailed,
    NoExpensesFound,
    PersistenceFailed,
    TranscriptionFailed,
    ValidationFailed,
)
from expense_store import ExpenseStore  # noqa: E402
from extraction_provider import build_extractor  # noqa: E402
from listing import list_expenses  # noqa: E402
from persistence.database import SessionLocal, init_db  # noqa: E402
from persistence.repository import ExpenseRepository  # noqa: E402
from pipeline import ExpensePipeline  # noqa: E402
from shared.observability.telemetry import (  # noqa: E402
    bind_request_context,
    ensure_request_id,
    reset_request_context,
    setup_telemetry,
)
from shared.provider_settings import (  # noqa: E402
    ProviderSettings,
    ProviderSettingsError,
    load_optional_seconds,
    load_provider_settings,
)
from transcription_provider import build_transcriber  # noqa: E402

logger = logging.getLogger(__name__)

SERVICE_NAME = "expense-service"
DEFAULT_MAX_UPLOAD_BYTES = 32 << 20
RFC3339_DATE_TIME = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2})(?:\.(?P<fraction>\d+))?(?P<offset>[Zz]|[+-]\d{2}:\d{2})$"
)

app = FastAPI(title="Expense Service")
setup_telemetry(app, service_name=SERVICE_NAME)


DEFAULT_CORS_ORIGINS: List[str] = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

CORS_ENV_KEYS = (
    "EXPENSE_SERVICE_CORS_ORIGINS",
    "CORS_ALLOWED_ORIGINS",
)


def _resolve_cors_origins() -> List[str]:
    """Comma-separated origins from the first populated env var in `CORS_ENV_KEYS`."""

    for key in CORS_ENV_KEYS:
        raw_value = os.getenv(key)
        if not raw_value:
            continue
        origins = [origin.strip() for origin in raw_value.split(",") if origin.strip()]
        if origins:
            if any(origin == "*" for origin in origins):
                return ["*"]
            return origins
    return DEFAULT_CORS_ORIGINS


def _load_transcription_settings() -> ProviderSettings:
    return load_provider_settings(
        provider_env="TRANSCRIPTION_PROVIDER",
        timeout_env="TRANSCRIPTION_PROVIDER_TIMEOUT_SECONDS",
        model_env="OPENAI_TRANSCRIPTION_MODEL",
        default_model="whisper-1",
        default_timeout=60.0,
    )


def _load_extraction_settings() -> ProviderSettings:
    return load_provider_settings(
        provider_env="EXTRACTION_PROVIDER",
        timeout_env="EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
        temperature_env="EXTRACTION_PROVIDER_TEMPERATURE",
        max_tokens_env="EXTRACTION_PROVIDER_MAX_TOKENS",
        default_timeout=30.0,
        default_temperature=0.1,
        default_max_tokens=1024,
    )


def _load_max_upload_bytes() -> int:
    raw_value = os.getenv("MAX_UPLOAD_BYTES")
    if not raw_value or not raw_value.strip():
        return DEFAULT_MAX_UPLOAD_BYTES
    try:
        return max(1, int(raw_value))
    except ValueError as exc:
        raise ProviderSettingsError(f"MAX_UPLOAD_BYTES must be an integer (received '{raw_value}')") from exc


def _build_pipeline(store: ExpenseStore) -> ExpensePipeline:
    transcription_settings = _load_transcription_settings()
    extraction_settings = _load_extraction_settings()
    try:
        transcriber = build_transcriber(transcription_settings.provider_name, settings=transcription_settings)
        extractor = build_extractor(extraction_settings.provider_name, settings=extraction_settings)
    except ValueError as exc:
        raise RuntimeError(str(exc)) from exc

    logger.info(
        {
            "event": "pipeline_configured",
            "transcription_provider": transcriber.name,
            "extraction_provider": extractor.name,
        }
    )
    return ExpensePipeline(
        transcriber,
        extractor,
        store,
        timeout_seconds=load_optional_seconds("PIPELINE_TIMEOUT_SECONDS"),
    )


EXPENSE_STORE: ExpenseStore = ExpenseRepository(SessionLocal)

try:
    PIPELINE = _build_pipeline(EXPENSE_STORE)
    MAX_UPLOAD_BYTES = _load_max_upload_bytes()
except ProviderSettingsError as exc:
    logger.error("Failed to load expense service settings: %s", exc)
    raise


def reload_pipeline_for_tests() -> None:
    """Refresh provider wiring after tests mutate environment variables."""

    global PIPELINE
    global MAX_UPLOAD_BYTES

    PIPELINE = _build_pipeline(EXPENSE_STORE)
    MAX_UPLOAD_BYTES = _load_max_upload_bytes()


def get_expense_store() -> ExpenseStore:
    return EXPENSE_STORE


def get_pipeline() -> ExpensePipeline:
    return PIPELINE


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    request_id = ensure_request_id(request)
    token = bind_request_context(request_id)
    try:
        response = await call_next(request)
        response.headers.setdefault("x-request-id", request_id)
        return response
    finally:
        reset_request_context(token)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_resolve_cors_origins(),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def error_response(status_code: int, error_code: str, details: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details, **extra},
    )


PIPELINE_ERROR_STATUS = {
    TranscriptionFailed: 502,
    ExtractionFailed: 502,
    NoExpensesFound: 422,
    PersistenceFailed: 500,
}


def parse_purchased_at(raw_value: Optional[str]) -> Optional[datetime]:
    """
    Parse the optional purchased_at form field (RFC 3339, e.g. 2026-02-22T10:30:00Z).

    Empty means "now". Seconds and a UTC offset (or Z) are required; fractional
    seconds beyond microseconds are truncated.
    """

    if raw_value is None or not raw_value.strip():
        return None

    candidate = raw_value.strip()
    match = RFC3339_DATE_TIME.match(candidate)
    if match is None:
        raise ValidationFailed(f"Invalid purchased_at '{candidate}': expected RFC 3339 date-time")

    base = match.group("base")[:10] + "T" + match.group("base")[11:]
    fraction = match.group("fraction")
    if fraction:
        base += "." + fraction[:6].ljust(6, "0")
    offset = match.group("offset")
    if offset in ("Z", "z"):
        offset = "+00:00"
    try:
        return datetime.fromisoformat(base + offset)
    except ValueError as exc:
        raise ValidationFailed(f"Invalid purchased_at '{candidate}': expected RFC 3339 date-time") from exc


@app.on_event("startup")
def on_startup() -> None:
    """Initialize persistence before serving requests."""
    init_db()


@app.get("/health")
def health_check() -> dict:
    """Reports service liveness for orchestrators."""
    return {"status": "ok", "service": SERVICE_NAME}


@app.post("/upload", response_model=None)
async def upload_audio(
    request: Request,
    audio: Optional[UploadFile] = File(None),
    purchased_at: Optional[str] = Form(None),
    pipeline: ExpensePipeline = Depends(get_pipeline),
) -> List[Dict[str, Any]] | JSONResponse:
    """Transcribes an uploaded voice note, extracts its expenses and stores them."""
    request_id = ensure_request_id(request)

    try:
        purchased_at_value = parse_purchased_at(purchased_at)
    except ValidationFailed as exc:
        return error_response(400, exc.error_code, str(exc))

    if audio is None:
        return error_response(400, "audio_required", "No audio file provided.")

    audio_bytes = await audio.read(MAX_UPLOAD_BYTES + 1)
    if not audio_bytes:
        return error_response(400, "audio_empty", "Uploaded audio file is empty.")
    if len(audio_bytes) > MAX_UPLOAD_BYTES:
        return error_response(413, "audio_too_large", f"Audio uploads are limited to {MAX_UPLOAD_BYTES} bytes.")

    filename = audio.filename or "voice-note"
    suffix = Path(filename).suffix
    with tempfile.NamedTemporaryFile(prefix="audio-", suffix=suffix, delete=False) as tmp_file:
        tmp_file.write(audio_bytes)
        tmp_path = tmp_file.name

    logger.info(
        {
            "event": "upload_received",
            "request_id": request_id,
            "audio_bytes": len(audio_bytes),
            "audio_suffix": suffix.lower(),
            "purchased_at_supplied": purchased_at_value is not None,
        }
    )

    try:
        expenses = await pipeline.process_audio(tmp_path, purchased_at_value)
    except ExpenseServiceError as exc:
        status_code = PIPELINE_ERROR_STATUS.get(type(exc), 500)
        extra: Dict[str, Any] = {}
        if isinstance(exc, PersistenceFailed):
            extra["index"] = exc.index
        log = logger.warning if status_code < 500 else logger.error
        log(
            {
                "event": "upload_failed",
                "request_id": request_id,
                "error": exc.error_code,
                "cause": type(exc.__cause__).__name__ if exc.__cause__ else None,
                **extra,
            }
        )
        return error_response(status_code, exc.error_code, str(exc), **extra)
    finally:
        Path(tmp_path).unlink(missing_ok=True)

    logger.info({"event": "upload_processed", "request_id": request_id, "expense_count": len(expenses)})
    return [expense.to_dict() for expense in expenses]


@app.get("/expenses", response_model=None)
def get_expenses(
    request: Request,
    page: Optional[str] = Query(None),
    per_page: Optional[str] = Query(None),
    order_by: Optional[str] = Query(None, alias="order[by]"),
    order_dir: Optional[str] = Query(None, alias="order[dir]"),
    store: ExpenseStore = Depends(get_expense_store),
) -> Dict[str, Any] | JSONResponse:
    """Returns one page of expenses; bad pagination or ordering input falls back to defaults."""
    try:
        result = list_expenses(store, page, per_page, order_by, order_dir)
    except Exception as exc:
        logger.error(
            {
                "event": "list_expenses_failed",
                "request_id": ensure_request_id(request),
                "error_type": type(exc).__name__,
                "error": str(exc),
            }
        )
        return error_response(500, "listing_failed", "Failed to list expenses.")
    return result.to_dict()


@app.get("/expenses/{expense_id}", response_model=None)
def get_expense(
    expense_id: str,
    store: ExpenseStore = Depends(get_expense_store),
) -> Dict[str, Any] | JSONResponse:
    """Returns a single stored expense."""
    expense = store.get(expense_id)
    if expense is None:
        return error_response(404, "expense_not_found", "Expense not found.")
    return expense.to_dict()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8080")))
