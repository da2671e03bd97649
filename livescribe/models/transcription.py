"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class TranscriptDirection(Enum):
    """Who produced the text: the speaker (input) or the model (output)."""
    INPUT = "input"
    OUTPUT = "output"


class MessageKind(Enum):
    """Classification of an inbound backend message."""
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    CONTROL = "control"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class TranscriptEvent:
    """A transcript fragment received from the speech backend."""
    text: str
    direction: TranscriptDirection = TranscriptDirection.INPUT
    is_final: bool = True
    service: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, str]:
        """Shape delivered to UI consumers."""
        return {
            "transcription": self.text,
            "type": self.direction.value,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ServerMessage:
    """One inbound backend message after classification."""
    kind: MessageKind
    message_type: str
    events: List[TranscriptEvent] = field(default_factory=list)
    error: Optional[Any] = None
    session_id: Optional[str] = None
