from __future__ import annotations

"""
Provider abstraction for speech-to-text.

A transcriber turns one audio file on disk into plain text. The pipeline only
depends on the Protocol below; which implementation runs (sidecar transcript,
fixture replay, OpenAI) is chosen from configuration at startup.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".txt"


@runtime_checkable
class Transcriber(Protocol):
    """
    Interface for swappable speech-to-text backends.

    Implementations expose a descriptive `name` and a blocking `transcribe`
    method. Provider failures are raised as-is; the pipeline wraps them.
    """

    name: str

    def transcribe(self, audio_path: str) -> str:
        """Return the full transcription of the audio file at `audio_path`."""
        ...


class DeterministicTranscriber:
    """
    Offline transcriber that reads a transcript stored next to the audio file.

    `note.m4a` is transcribed as the contents of `note.m4a.txt` (or `note.txt`).
    The audio itself must still be readable; a missing sidecar yields "".
    """

    name = "deterministic"

    def transcribe(self, audio_path: str) -> str:
        path = Path(audio_path)
        with path.open("rb") as handle:
            audio_size = len(handle.read())

        for candidate in (Path(f"{path}{SIDECAR_SUFFIX}"), path.with_suffix(SIDECAR_SUFFIX)):
            if candidate != path and candidate.is_file():
                text = candidate.read_text(encoding="utf-8").strip()
                logger.info(
                    {
                        "event": "sidecar_transcript_loaded",
                        "provider": self.name,
                        "audio_bytes": audio_size,
                        "text_length": len(text),
                    }
                )
                return text

        logger.warning({"event": "sidecar_transcript_missing", "provider": self.name, "audio_bytes": audio_size})
        return ""


class MockTranscriber:
    """Fixture-driven transcriber for tests and offline demos."""

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        env_override = os.getenv("TRANSCRIPTION_PROVIDER_FIXTURE")
        candidate = fixture_path or env_override
        if candidate is None:
            candidate = _default_fixture_path()

        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock transcription fixture not found at {self._fixture_path}")

    def transcribe(self, audio_path: str) -> str:
        payload = self._load_fixture()
        text = payload.get("text")
        if not isinstance(text, str):
            raise ValueError(f"Mock transcription fixture must contain a 'text' string: {self._fixture_path}")
        return text

    def _load_fixture(self) -> dict[str, Any]:
        try:
            return json.loads(self._fixture_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mock transcription fixture is not valid JSON: {self._fixture_path}") from exc


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_transcription_provider.json"


def build_transcriber(name: str | None, *, settings: Optional[Any] = None) -> Transcriber:
    """Factory that instantiates the requested transcriber implementation."""

    normalized = (name or "").strip().lower()
    if normalized in ("", "deterministic"):
        return DeterministicTranscriber()
    if normalized == "mock":
        return MockTranscriber()
    if normalized == "openai":
        from providers.openai_transcription import OpenAITranscriptionProvider

        return OpenAITranscriptionProvider(settings=settings)

    raise ValueError(f"Unsupported transcription provider '{name}'")
