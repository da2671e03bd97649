"""Abstract base class for streaming transcription backends."""

import json
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, Union
import logging

from ..errors import ProtocolError
from ..models.audio import PCMPayload
from ..models.transcription import MessageKind, ServerMessage, TranscriptDirection, TranscriptEvent

logger = logging.getLogger(__name__)


class AbstractTranscriptionBackend(ABC):
    """Describes one vendor's streaming protocol: endpoint, setup, framing and classification.

    Backends hold no connection state. TranscriptionSession owns the socket
    and asks the backend how to talk over it.
    """

    service_name = "abstract"
    # When True, no audio may be sent until is_setup_ack() sees the backend's ack.
    requires_setup_ack = False

    def __init__(self, api_key: str, language: str = "en", sample_rate: int = 16000):
        """Initialize backend.

        Args:
            api_key: Vendor API key
            language: Language hint passed in the setup message
            sample_rate: Rate of the PCM16 audio that will be streamed
        """
        if not api_key:
            raise ValueError(f"{self.service_name} API key is required")
        self.api_key = api_key
        self.language = language
        self.sample_rate = sample_rate

    @property
    @abstractmethod
    def url(self) -> str:
        """WebSocket endpoint."""
        pass

    def headers(self) -> Dict[str, str]:
        """Extra HTTP headers for the WebSocket handshake."""
        return {}

    @abstractmethod
    def setup_message(self) -> Dict[str, Any]:
        """Configuration message sent once, right after the socket opens."""
        pass

    @abstractmethod
    def frame_audio(self, payload: PCMPayload) -> Dict[str, Any]:
        """Wrap one base64 PCM payload in the backend's append message."""
        pass

    @abstractmethod
    def parse_message(self, data: Dict[str, Any]) -> ServerMessage:
        """Classify one decoded inbound message."""
        pass

    def is_setup_ack(self, message: ServerMessage) -> bool:
        return False

    def decode(self, raw: Union[str, bytes]) -> Dict[str, Any]:
        """Decode a raw frame into a JSON object.

        Raises:
            ProtocolError: If the frame is not a JSON object
        """
        try:
            if isinstance(raw, bytes):
                raw = raw.decode('utf-8')
            data = json.loads(raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise ProtocolError(f"Unparseable message from {self.service_name}: {e}") from e

        if not isinstance(data, dict):
            raise ProtocolError(f"Expected a JSON object from {self.service_name}, got {type(data).__name__}")
        return data

    def classify(self, raw: Union[str, bytes]) -> ServerMessage:
        """Decode and classify one raw frame.

        Raises:
            ProtocolError: If the frame is unparseable or has an unexpected shape
        """
        data = self.decode(raw)
        try:
            return self.parse_message(data)
        except (AttributeError, TypeError, KeyError) as e:
            raise ProtocolError(f"Malformed {self.service_name} message: {e}") from e

    def make_event(self, text: Optional[str], direction: TranscriptDirection,
                   is_final: bool) -> Optional[TranscriptEvent]:
        """Build a TranscriptEvent, or None when the text is blank."""
        if not isinstance(text, str) or not text.strip():
            return None
        return TranscriptEvent(
            text=text.strip(),
            direction=direction,
            is_final=is_final,
            service=self.service_name,
        )

    def transcript_message(self, message_type: str, text: Optional[str],
                           direction: TranscriptDirection, is_final: bool) -> ServerMessage:
        event = self.make_event(text, direction, is_final)
        return ServerMessage(
            kind=MessageKind.FINAL if is_final else MessageKind.PARTIAL,
            message_type=message_type,
            events=[event] if event else [],
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "service": self.service_name,
            "language": self.language,
            "sample_rate": self.sample_rate,
        }
