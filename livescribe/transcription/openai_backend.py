"""OpenAI Realtime API transcription backend."""

import logging
from typing import Any, Dict, List

from .base import AbstractTranscriptionBackend
from ..models.audio import PCMPayload
from ..models.transcription import MessageKind, ServerMessage, TranscriptDirection

logger = logging.getLogger(__name__)

REALTIME_URL = "wss://api.openai.com/v1/realtime"

INPUT_DELTA = "conversation.item.input_audio_transcription.delta"
INPUT_COMPLETED = "conversation.item.input_audio_transcription.completed"
# Older event name still emitted by some realtime model snapshots.
INPUT_COMPLETED_LEGACY = "conversation.item_input_audio_transcription.completed"
INPUT_FAILED = "conversation.item.input_audio_transcription.failed"

# Known families of bookkeeping events. Prefix match.
CONTROL_PREFIXES = (
    "session.",
    "input_audio_buffer.",
    "conversation.",
    "response.",
    "rate_limits.",
    "transcription_session.",
)


class OpenAIRealtimeBackend(AbstractTranscriptionBackend):
    """OpenAI Realtime API: server VAD + whisper input transcription."""

    service_name = "OpenAI Realtime"

    def __init__(self,
                 api_key: str,
                 model: str = "gpt-4o-realtime-preview-2024-10-01",
                 transcription_model: str = "whisper-1",
                 language: str = "en",
                 sample_rate: int = 16000,
                 vad_threshold: float = 0.3,
                 prefix_padding_ms: int = 100,
                 silence_duration_ms: int = 400,
                 instructions: str = "You are a transcription system. Only transcribe the audio. Do not answer or comment."):
        """Initialize OpenAI Realtime backend.

        Args:
            api_key: OpenAI API key
            model: Realtime model name
            transcription_model: Model used for input audio transcription
            language: Language hint for the transcription model
            sample_rate: Rate of the streamed PCM16 audio
            vad_threshold: Server VAD activation threshold (0.0 to 1.0)
            prefix_padding_ms: Audio kept before detected speech
            silence_duration_ms: Silence that ends a turn
            instructions: System instructions for the session
        """
        super().__init__(api_key, language=language, sample_rate=sample_rate)
        self.model = model
        self.transcription_model = transcription_model
        self.vad_threshold = vad_threshold
        self.prefix_padding_ms = prefix_padding_ms
        self.silence_duration_ms = silence_duration_ms
        self.instructions = instructions

    @property
    def url(self) -> str:
        return f"{REALTIME_URL}?model={self.model}"

    def headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1",
        }

    def setup_message(self) -> Dict[str, Any]:
        return {
            "type": "session.update",
            "session": {
                "modalities": ["audio", "text"],
                "instructions": self.instructions,
                "input_audio_format": "pcm16",
                "input_audio_transcription": {
                    "model": self.transcription_model,
                    "language": self.language,
                },
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": self.vad_threshold,
                    "prefix_padding_ms": self.prefix_padding_ms,
                    "silence_duration_ms": self.silence_duration_ms,
                },
                "tools": [],
                "tool_choice": "none",
                "temperature": 0.6,
                "max_response_output_tokens": 1,
            },
        }

    def frame_audio(self, payload: PCMPayload) -> Dict[str, Any]:
        return {"type": "input_audio_buffer.append", "audio": payload.data}

    def parse_message(self, data: Dict[str, Any]) -> ServerMessage:
        message_type = data.get("type")
        if not isinstance(message_type, str):
            return ServerMessage(kind=MessageKind.UNKNOWN, message_type=str(message_type))

        if message_type == INPUT_DELTA:
            return self.transcript_message(message_type, data.get("delta"),
                                           TranscriptDirection.INPUT, is_final=False)

        if message_type in (INPUT_COMPLETED, INPUT_COMPLETED_LEGACY):
            return self.transcript_message(message_type, data.get("transcript"),
                                           TranscriptDirection.INPUT, is_final=True)

        if message_type in (INPUT_FAILED, "error"):
            return ServerMessage(kind=MessageKind.ERROR, message_type=message_type,
                                 error=data.get("error"))

        if message_type == "conversation.item.created":
            events = self._user_audio_transcripts(data.get("item") or {})
            if events:
                return ServerMessage(kind=MessageKind.FINAL, message_type=message_type, events=events)
            return ServerMessage(kind=MessageKind.CONTROL, message_type=message_type)

        if message_type == "response.text.delta":
            return self.transcript_message(message_type, data.get("delta"),
                                           TranscriptDirection.OUTPUT, is_final=False)

        if message_type == "response.content_part.added":
            part = data.get("part") or {}
            if part.get("type") == "text":
                return self.transcript_message(message_type, part.get("text"),
                                               TranscriptDirection.OUTPUT, is_final=False)
            return ServerMessage(kind=MessageKind.CONTROL, message_type=message_type)

        if message_type == "response.output_item.done":
            events = self._output_texts(data.get("item") or {})
            if events:
                return ServerMessage(kind=MessageKind.FINAL, message_type=message_type, events=events)
            return ServerMessage(kind=MessageKind.CONTROL, message_type=message_type)

        if message_type == "session.created":
            session = data.get("session") or {}
            return ServerMessage(kind=MessageKind.CONTROL, message_type=message_type,
                                 session_id=session.get("id"))

        if message_type.startswith(CONTROL_PREFIXES):
            return ServerMessage(kind=MessageKind.CONTROL, message_type=message_type)

        return ServerMessage(kind=MessageKind.UNKNOWN, message_type=message_type)

    def _user_audio_transcripts(self, item: Dict[str, Any]) -> List:
        if item.get("type") != "message" or item.get("role") != "user":
            return []
        events = []
        for content in item.get("content") or []:
            if content.get("type") == "input_audio":
                event = self.make_event(content.get("transcript"), TranscriptDirection.INPUT, is_final=True)
                if event:
                    events.append(event)
        return events

    def _output_texts(self, item: Dict[str, Any]) -> List:
        if item.get("type") != "message":
            return []
        events = []
        for content in item.get("content") or []:
            if content.get("type") == "text":
                event = self.make_event(content.get("text"), TranscriptDirection.OUTPUT, is_final=True)
                if event:
                    events.append(event)
        return events

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats.update({
            "model": self.model,
            "transcription_model": self.transcription_model,
            "vad_threshold": self.vad_threshold,
            "silence_duration_ms": self.silence_duration_ms,
        })
        return stats
