from __future__ import annotations

"""
Shared helpers for configuring the pluggable speech-to-text and extraction providers.

The transcription and extraction stages read the same family of environment
variables to decide which provider to use and how outbound calls are tuned.
Loading and validating them in one place keeps the OpenAI adapters on consistent
timeouts, temperature and token limits without duplicating parsing logic.
"""

import os
from dataclasses import dataclass
from typing import Optional

SUPPORTED_PROVIDERS = frozenset({"deterministic", "mock", "openai"})
REQUIRED_OPENAI_ENV_VARS = ("OPENAI_API_KEY", "OPENAI_MODEL")
DEFAULT_OPENAI_API_BASE = "https://api.openai.com/v1"


class ProviderSettingsError(RuntimeError):
    """Raised when provider configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class OpenAIConfig:
    api_key: str
    model: str
    api_base: str


@dataclass(frozen=True, slots=True)
class ProviderSettings:
    provider_name: str
    timeout_seconds: float
    temperature: float
    max_output_tokens: int
    openai: Optional[OpenAIConfig] = None


def load_provider_settings(
    *,
    provider_env: str,
    timeout_env: str,
    temperature_env: str | None = None,
    max_tokens_env: str | None = None,
    model_env: str = "OPENAI_MODEL",
    default_model: str | None = None,
    default_provider: str = "deterministic",
    default_timeout: float = 30.0,
    default_temperature: float = 0.1,
    default_max_tokens: int = 1024,
) -> ProviderSettings:
    """
    Construct ProviderSettings for one stage of the voice expense pipeline.

    Args:
        provider_env: Env var that selects the provider implementation.
        timeout_env: Env var that overrides outbound request timeouts.
        temperature_env: Env var that tunes generation randomness (LLM stages only).
        max_tokens_env: Env var that caps model responses (LLM stages only).
        model_env: Env var holding the OpenAI model for this stage.
        default_model: Model used when `model_env` is unset. When None the
            model env var is mandatory for the openai provider.
        default_*: Fallback values when the env var is unset/empty.
    """

    provider_name = _normalize_provider(os.getenv(provider_env, default_provider))
    timeout_seconds = _parse_float(os.getenv(timeout_env), default_timeout, timeout_env)
    temperature = default_temperature
    if temperature_env:
        temperature = _parse_float(os.getenv(temperature_env), default_temperature, temperature_env)
    max_output_tokens = default_max_tokens
    if max_tokens_env:
        max_output_tokens = _parse_int(os.getenv(max_tokens_env), default_max_tokens, max_tokens_env)

    if timeout_seconds <= 0:
        raise ProviderSettingsError(f"{timeout_env} must be > 0 (received {timeout_seconds})")

    openai_config: Optional[OpenAIConfig] = None
    if provider_name == "openai":
        openai_config = _build_openai_config(provider_env, model_env, default_model)

    return ProviderSettings(
        provider_name=provider_name,
        timeout_seconds=timeout_seconds,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        openai=openai_config,
    )


def load_optional_seconds(env_key: str) -> Optional[float]:
    """Parse an optional positive duration; unset or empty means no limit."""

    raw_value = os.getenv(env_key)
    if raw_value is None or raw_value.strip() == "":
        return None
    seconds = _parse_float(raw_value, 0.0, env_key)
    if seconds <= 0:
        raise ProviderSettingsError(f"{env_key} must be > 0 (received '{raw_value}')")
    return seconds


def _normalize_provider(raw_value: Optional[str]) -> str:
    candidate = (raw_value or "").strip().lower()
    if not candidate:
        candidate = "deterministic"

    if candidate not in SUPPORTED_PROVIDERS:
        raise ProviderSettingsError(f"Unsupported provider '{candidate}'")
    return candidate


def _parse_float(raw_value: Optional[str], default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise ProviderSettingsError(f"{env_key} must be numeric (received '{raw_value}')") from exc


def _parse_int(raw_value: Optional[str], default: int, env_key: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ProviderSettingsError(f"{env_key} must be an integer (received '{raw_value}')") from exc


def _build_openai_config(provider_env: str, model_env: str, default_model: str | None) -> OpenAIConfig:
    required = ["OPENAI_API_KEY"]
    if default_model is None:
        required.append(model_env)
    missing = [env_key for env_key in required if not (os.getenv(env_key) or "").strip()]
    if missing:
        formatted_missing = ", ".join(missing)
        raise ProviderSettingsError(
            f"{provider_env}=openai requires the following env vars: {formatted_missing}"
        )

    model = (os.getenv(model_env) or "").strip() or default_model
    api_base = (os.getenv("OPENAI_API_BASE") or "").strip() or DEFAULT_OPENAI_API_BASE
    return OpenAIConfig(
        api_key=os.environ["OPENAI_API_KEY"].strip(),
        model=model,
        api_base=api_base,
    )
