"""Pluggable OpenAI implementations of the transcription and extraction providers."""

from .openai_extraction import OpenAIExtractionProvider
from .openai_transcription import OpenAITranscriptionProvider

__all__ = ["OpenAIExtractionProvider", "OpenAITranscriptionProvider"]
