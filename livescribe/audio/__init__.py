"""Audio capture and encoding module."""

from .capture import AudioCapture, list_input_devices
from .recorder import ChunkRecorder, FullRecording
from .encoder import ChunkEncoder
from .audio_pub import AudioPublisher

__all__ = [
    'AudioCapture',
    'list_input_devices',
    'ChunkRecorder',
    'FullRecording',
    'ChunkEncoder',
    'AudioPublisher',
]
