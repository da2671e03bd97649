"""Builds a transcription backend from configuration."""

import logging

from .base import AbstractTranscriptionBackend
from .openai_backend import OpenAIRealtimeBackend
from .gemini_backend import GeminiLiveBackend
from ..config import LiveScribeConfig

logger = logging.getLogger(__name__)

BACKENDS = ("openai", "gemini")


def create_backend(config: LiveScribeConfig, name: str = None) -> AbstractTranscriptionBackend:
    """Create the configured backend.

    Args:
        config: Application configuration
        name: Backend name overriding `transcription.backend`

    Raises:
        ValueError: Unknown backend or missing API key
    """
    name = (name or config.get('transcription.backend', 'openai')).lower()
    if name not in BACKENDS:
        raise ValueError(f"Unknown transcription backend '{name}', expected one of {BACKENDS}")

    api_key = config.get_api_key(name)
    language = config.get('transcription.language', 'en')
    sample_rate = config.get('transcription.sample_rate', 16000)

    logger.info(f"Creating {name} backend (language={language}, sample_rate={sample_rate})")

    if name == "openai":
        return OpenAIRealtimeBackend(
            api_key=api_key,
            model=config.get('transcription.openai.model', "gpt-4o-realtime-preview-2024-10-01"),
            transcription_model=config.get('transcription.openai.transcription_model', "whisper-1"),
            language=language,
            sample_rate=sample_rate,
            vad_threshold=config.get('transcription.openai.vad_threshold', 0.3),
            prefix_padding_ms=config.get('transcription.openai.prefix_padding_ms', 100),
            silence_duration_ms=config.get('transcription.openai.silence_duration_ms', 400),
        )

    return GeminiLiveBackend(
        api_key=api_key,
        model=config.get('transcription.gemini.model', "models/gemini-2.0-flash-exp"),
        language=language,
        sample_rate=sample_rate,
    )
