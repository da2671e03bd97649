"""Data models for the livescribe package."""

from .audio import AudioStats, AudioChunk, PCMPayload
from .session import SessionState, RecordingInfo
from .transcription import (
    TranscriptDirection,
    MessageKind,
    TranscriptEvent,
    ServerMessage,
)

__all__ = [
    "AudioStats",
    "AudioChunk",
    "PCMPayload",
    "SessionState",
    "RecordingInfo",
    "TranscriptDirection",
    "MessageKind",
    "TranscriptEvent",
    "ServerMessage",
]
