"""Session-related data models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class SessionState(Enum):
    """Lifecycle of a streaming transcription connection."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class RecordingInfo:
    """Information about a saved full-session recording."""
    recording_id: str
    audio_file: str
    created_at: datetime
    duration_seconds: float
    file_size_bytes: int
    sample_rate: int
    channels: int
    total_frames: int
