"""Transcription module for livescribe."""

from .base import AbstractTranscriptionBackend
from .openai_backend import OpenAIRealtimeBackend
from .gemini_backend import GeminiLiveBackend
from .session import TranscriptionSession
from .registry import TranscriptionSessionManager
from .publisher import TranscriptionPublisher
from .transcript import RollingTranscript
from .factory import create_backend

__all__ = [
    "AbstractTranscriptionBackend",
    "OpenAIRealtimeBackend",
    "GeminiLiveBackend",
    "TranscriptionSession",
    "TranscriptionSessionManager",
    "TranscriptionPublisher",
    "RollingTranscript",
    "create_backend",
]
