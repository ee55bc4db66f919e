from pathlib import Path

import pytest

from extraction_provider import DeterministicExtractor, MockExtractor, build_extractor
from providers.openai_extraction import OpenAIExtractionProvider
from providers.openai_transcription import OpenAITranscriptionProvider
from shared.provider_settings import ProviderSettingsError, load_optional_seconds, load_provider_settings
from transcription_provider import DeterministicTranscriber, MockTranscriber, build_transcriber

SERVICE_ROOT = Path(__file__).resolve().parents[1]

PROVIDER_ENV_KEYS = (
    "TRANSCRIPTION_PROVIDER",
    "TRANSCRIPTION_PROVIDER_TIMEOUT_SECONDS",
    "EXTRACTION_PROVIDER",
    "EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
    "EXTRACTION_PROVIDER_TEMPERATURE",
    "EXTRACTION_PROVIDER_MAX_TOKENS",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_API_BASE",
    "OPENAI_TRANSCRIPTION_MODEL",
    "PIPELINE_TIMEOUT_SECONDS",
    "TRANSCRIPTION_PROVIDER_FIXTURE",
    "EXTRACTION_PROVIDER_FIXTURE",
)


@pytest.fixture(autouse=True)
def clean_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in PROVIDER_ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def _extraction_settings():
    return load_provider_settings(
        provider_env="EXTRACTION_PROVIDER",
        timeout_env="EXTRACTION_PROVIDER_TIMEOUT_SECONDS",
        temperature_env="EXTRACTION_PROVIDER_TEMPERATURE",
        max_tokens_env="EXTRACTION_PROVIDER_MAX_TOKENS",
    )


def _transcription_settings():
    return load_provider_settings(
        provider_env="TRANSCRIPTION_PROVIDER",
        timeout_env="TRANSCRIPTION_PROVIDER_TIMEOUT_SECONDS",
        model_env="OPENAI_TRANSCRIPTION_MODEL",
        default_model="whisper-1",
        default_timeout=60.0,
    )


def test_defaults_select_deterministic_providers() -> None:
    extraction = _extraction_settings()
    transcription = _transcription_settings()

    assert extraction.provider_name == "deterministic"
    assert extraction.timeout_seconds == 30.0
    assert extraction.temperature == 0.1
    assert extraction.max_output_tokens == 1024
    assert extraction.openai is None
    assert transcription.timeout_seconds == 60.0

    assert isinstance(build_extractor(extraction.provider_name), DeterministicExtractor)
    assert isinstance(build_transcriber(transcription.provider_name), DeterministicTranscriber)


def test_env_overrides_are_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTRACTION_PROVIDER", " Mock ")
    monkeypatch.setenv("EXTRACTION_PROVIDER_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("EXTRACTION_PROVIDER_TEMPERATURE", "0")
    monkeypatch.setenv("EXTRACTION_PROVIDER_MAX_TOKENS", "256")

    settings = _extraction_settings()

    assert settings.provider_name == "mock"
    assert settings.timeout_seconds == 12.5
    assert settings.temperature == 0.0
    assert settings.max_output_tokens == 256


@pytest.mark.parametrize(
    "key, value",
    [
        ("EXTRACTION_PROVIDER", "whisper-local"),
        ("EXTRACTION_PROVIDER_TIMEOUT_SECONDS", "soon"),
        ("EXTRACTION_PROVIDER_TIMEOUT_SECONDS", "0"),
        ("EXTRACTION_PROVIDER_MAX_TOKENS", "many"),
    ],
)
def test_invalid_settings_raise(monkeypatch: pytest.MonkeyPatch, key: str, value: str) -> None:
    monkeypatch.setenv(key, value)

    with pytest.raises(ProviderSettingsError):
        _extraction_settings()


def test_openai_extraction_requires_key_and_model(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTRACTION_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    with pytest.raises(ProviderSettingsError, match="OPENAI_MODEL"):
        _extraction_settings()

    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o-mini")
    settings = _extraction_settings()

    assert settings.openai is not None
    assert settings.openai.model == "gpt-4o-mini"
    assert settings.openai.api_base == "https://api.openai.com/v1"
    assert isinstance(build_extractor("openai", settings=settings), OpenAIExtractionProvider)


def test_openai_transcription_defaults_to_whisper(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSCRIPTION_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_API_BASE", "https://proxy.example.com/v1")

    settings = _transcription_settings()

    assert settings.openai is not None
    assert settings.openai.model == "whisper-1"
    assert settings.openai.api_base == "https://proxy.example.com/v1"
    assert isinstance(build_transcriber("openai", settings=settings), OpenAITranscriptionProvider)


def test_openai_transcription_still_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRANSCRIPTION_PROVIDER", "openai")

    with pytest.raises(ProviderSettingsError, match="OPENAI_API_KEY"):
        _transcription_settings()


def test_mock_providers_replay_fixtures(tmp_path: Path) -> None:
    transcriber = build_transcriber("mock")
    extractor = build_extractor("mock")

    assert isinstance(transcriber, MockTranscriber)
    assert isinstance(extractor, MockExtractor)
    assert "papas" in transcriber.transcribe(str(tmp_path / "unused.m4a"))
    assert [expense.description for expense in extractor.extract("ignored")] == ["papas", "pan"]


def test_mock_transcriber_honours_fixture_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    fixture = tmp_path / "transcript.json"
    fixture.write_text('{"text": "un pan a diez"}', encoding="utf-8")
    monkeypatch.setenv("TRANSCRIPTION_PROVIDER_FIXTURE", str(fixture))

    assert build_transcriber("mock").transcribe("ignored.m4a") == "un pan a diez"


def test_unknown_provider_names_are_rejected() -> None:
    with pytest.raises(ValueError):
        build_transcriber("sphinx")
    with pytest.raises(ValueError):
        build_extractor("regex")


def test_deterministic_transcriber_reads_sidecar(tmp_path: Path) -> None:
    audio = tmp_path / "note.m4a"
    audio.write_bytes(b"fake-audio")
    (tmp_path / "note.m4a.txt").write_text("1 pan 10\n", encoding="utf-8")

    assert DeterministicTranscriber().transcribe(str(audio)) == "1 pan 10"


def test_deterministic_transcriber_without_sidecar_returns_empty(tmp_path: Path) -> None:
    audio = tmp_path / "note.wav"
    audio.write_bytes(b"fake-audio")

    assert DeterministicTranscriber().transcribe(str(audio)) == ""


def test_deterministic_transcriber_requires_audio(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        DeterministicTranscriber().transcribe(str(tmp_path / "missing.m4a"))


def test_pipeline_timeout_is_optional(monkeypatch: pytest.MonkeyPatch) -> None:
    assert load_optional_seconds("PIPELINE_TIMEOUT_SECONDS") is None

    monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "45")
    assert load_optional_seconds("PIPELINE_TIMEOUT_SECONDS") == 45.0

    monkeypatch.setenv("PIPELINE_TIMEOUT_SECONDS", "-1")
    with pytest.raises(ProviderSettingsError):
        load_optional_seconds("PIPELINE_TIMEOUT_SECONDS")
