"""Persistent storage for livescribe."""

from .recording_store import RecordingStore

__all__ = ["RecordingStore"]
