"""
OpenAI Whisper transcription provider.

Implements the Transcriber protocol by uploading the audio file to the OpenAI
audio transcription endpoint. Errors are logged and re-raised; the pipeline
reports them as TranscriptionFailed.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from openai import APIError, APITimeoutError, OpenAI

from shared.observability.privacy import text_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_TRANSCRIPTION_MODEL = "whisper-1"


class OpenAITranscriptionProvider:
    """Speech-to-text backed by the OpenAI audio API."""

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        if settings and settings.openai:
            self._client = OpenAI(
                api_key=settings.openai.api_key,
                base_url=settings.openai.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
            self._model = settings.openai.model
        else:
            self._client = None
            self._model = DEFAULT_TRANSCRIPTION_MODEL

    def transcribe(self, audio_path: str) -> str:
        if not self._client:
            raise RuntimeError("OpenAI client not configured. Check OPENAI_API_KEY and OPENAI_TRANSCRIPTION_MODEL.")

        path = Path(audio_path)
        logger.info(
            {
                "event": "openai_transcription_request",
                "provider": self.name,
                "model": self._model,
                "audio_suffix": path.suffix.lower(),
            }
        )

        try:
            with path.open("rb") as audio_file:
                response = self._client.audio.transcriptions.create(model=self._model, file=audio_file)
        except (APIError, APITimeoutError) as exc:
            logger.error(
                {
                    "event": "openai_transcription_error",
                    "provider": self.name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise

        text = getattr(response, "text", None)
        if not isinstance(text, str):
            raise ValueError("OpenAI transcription response did not include text")

        logger.info(
            {
                "event": "openai_transcription_response",
                "provider": self.name,
                "transcript": text_fingerprint(text),
            }
        )
        return text
