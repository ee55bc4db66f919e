"""
Shared observability helpers (telemetry, privacy utilities, etc.).

The expense service imports from this package to get consistent JSON logging,
request correlation, per-stage pipeline spans and log-safe fingerprints of
transcribed text.
"""

from .privacy import hash_payload, text_fingerprint
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    TelemetryConfig,
    bind_request_context,
    current_pipeline_stage,
    ensure_request_id,
    load_telemetry_config,
    pipeline_stage,
    reset_request_context,
    setup_telemetry,
)

__all__ = [
    "hash_payload",
    "text_fingerprint",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "TelemetryConfig",
    "bind_request_context",
    "current_pipeline_stage",
    "ensure_request_id",
    "load_telemetry_config",
    "pipeline_stage",
    "reset_request_context",
    "setup_telemetry",
]
