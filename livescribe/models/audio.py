"""Audio-related data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class AudioStats:
    """Audio capture statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    frames_per_buffer: int
    total_frames: int
    chunks_emitted: int
    system_audio: bool


@dataclass
class AudioChunk:
    """A short window of captured audio stored in a compressed container."""
    chunk_id: str
    data: bytes  # Container bytes (FLAC, OGG, WAV...)
    sample_rate: int  # Native capture rate
    sequence_number: int
    timestamp: float  # Unix timestamp when the window was closed
    channels: int = 1
    container: str = "FLAC"
    num_frames: int = 0
    duration_ms: Optional[int] = None
    final: bool = False  # True for the last window of a capture

    def __post_init__(self):
        """Derive the window duration from the frame count."""
        if self.duration_ms is None and self.sample_rate:
            self.duration_ms = int(self.num_frames * 1000 / self.sample_rate)


@dataclass
class PCMPayload:
    """Base64 PCM16 mono audio ready for transport. Lives for one send call."""
    data: str
    sample_rate: int
    num_samples: int
    chunk_id: Optional[str] = None
