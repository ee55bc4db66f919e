#!/usr/bin/env python3
"""
Diagnostic script for the expense service environment.

Prints every provider, database and upload setting the service reads (API keys
redacted), then loads the provider settings exactly as the service does at
startup so a bad value fails here instead of on deploy.
"""

import os
import sys
from pathlib import Path
from typing import Any

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"
if str(SERVICES_ROOT) not in sys.path:
    sys.path.insert(0, str(SERVICES_ROOT))

from shared.provider_settings import (  # noqa: E402
    REQUIRED_OPENAI_ENV_VARS,
    ProviderSettingsError,
    load_optional_seconds,
    load_provider_settings,
)

PROVIDER_VARS = ("TRANSCRIPTION_PROVIDER", "EXTRACTION_PROVIDER")

OPTIONAL_VARS = {
    "TRANSCRIPTION_PROVIDER_TIMEOUT_SECONDS": "60.0",
    "EXTRACTION_PROVIDER_TIMEOUT_SECONDS": "30.0",
    "EXTRACTION_PROVIDER_TEMPERATURE": "0.1",
    "EXTRACTION_PROVIDER_MAX_TOKENS": "1024",
    "OPENAI_API_BASE": "https://api.openai.com/v1",
    "OPENAI_TRANSCRIPTION_MODEL": "whisper-1",
    "PIPELINE_TIMEOUT_SECONDS": "unlimited",
    "EXPENSES_DB_URL": "sqlite:///services/expense-service/data/expenses.db",
    "MAX_UPLOAD_BYTES": str(32 << 20),
    "EXPENSE_SERVICE_CORS_ORIGINS": "http://localhost:3000,http://127.0.0.1:3000",
    "ENABLE_TELEMETRY": "false",
}


def check_env_var(key: str) -> dict[str, Any]:
    """Report whether an environment variable is set, redacting secrets."""
    value = os.getenv(key)
    is_set = value is not None and value.strip() != ""

    result = {"key": key, "is_set": is_set, "value": value if is_set else None}
    if is_set and any(marker in key.upper() for marker in ("KEY", "SECRET", "PASSWORD")):
        result["value"] = f"{value[:7]}...{value[-4:]}" if len(value) > 11 else "***REDACTED***"
    if is_set and key == "EXPENSES_DB_URL" and "@" in value:
        scheme, _, rest = value.partition("://")
        result["value"] = f"{scheme}://***@{rest.rsplit('@', 1)[-1]}"
    return result


def _print_var(key: str, default: str | None = None) -> bool:
    result = check_env_var(key)
    if result["is_set"]:
        print(f"✓ {key:45} = {result['value']}")
    elif default is not None:
        print(f"○ {key:45} = NOT SET (default: {default})")
    else:
        print(f"✗ {key:45} = NOT SET")
    return result["is_set"]


def _load_stage_settings() -> list[str]:
    issues = []
    loaders = {
        "transcription": dict(
            provider_env="TRANSCRIPTION_PROVIDER",
            timeout_env="TRANSCRIPTION_PROVIDER_TIMEOUT_SECONDS",
            model_env="OPENAI_TRANSCRIPTION_MODEL",
            default_model="whisper-1",
            default_timeout=60.0,
        ),
        "extraction": dict(
            provider_env="EXTRACTION_PROVIDER",
            timeout_env="EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
            temperature_env="EXTRACTION_PROVIDER_TEMPERATURE",
            max_tokens_env="EXTRACTION_PROVIDER_MAX_TOKENS",
        ),
    }
    for stage, kwargs in loaders.items():
        try:
            settings = load_provider_settings(**kwargs)
        except ProviderSettingsError as exc:
            issues.append(f"{stage}: {exc}")
            continue
        model = settings.openai.model if settings.openai else "-"
        print(f"  {stage:15} provider={settings.provider_name} model={model} timeout={settings.timeout_seconds}s")

    try:
        load_optional_seconds("PIPELINE_TIMEOUT_SECONDS")
    except ProviderSettingsError as exc:
        issues.append(str(exc))
    return issues


def main() -> int:
    """Check expense service environment variables and report status."""
    print("=" * 70)
    print("Expense Service Environment Diagnostic")
    print("=" * 70)
    print()

    print("PROVIDERS:")
    print("-" * 70)
    for key in PROVIDER_VARS:
        _print_var(key, default="deterministic")

    uses_openai = any((os.getenv(key) or "").strip().lower() == "openai" for key in PROVIDER_VARS)
    if uses_openai:
        for key in REQUIRED_OPENAI_ENV_VARS:
            _print_var(key)
    print()

    print("OPTIONAL VARIABLES:")
    print("-" * 70)
    for key, default in OPTIONAL_VARS.items():
        _print_var(key, default=default)
    print()

    print("RESOLVED SETTINGS:")
    print("-" * 70)
    issues = _load_stage_settings()
    print()
    print("=" * 70)

    if issues:
        print("❌ ISSUES FOUND:")
        for issue in issues:
            print(f"   - {issue}")
        return 1

    print("✓ Provider settings load cleanly.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
