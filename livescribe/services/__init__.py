"""Services layer for livescribe application logic."""

from .recording_service import RecordingService

__all__ = [
    "RecordingService",
]
