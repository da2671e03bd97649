"""Gemini Live API transcription backend."""

import logging
from typing import Any, Dict

from .base import AbstractTranscriptionBackend
from ..models.audio import PCMPayload
from ..models.transcription import MessageKind, ServerMessage, TranscriptDirection

logger = logging.getLogger(__name__)

LIVE_URL = ("wss://generativelanguage.googleapis.com/ws/"
            "google.ai.generativelanguage.v1alpha.GenerativeService.BidiGenerateContent")

CONTROL_KEYS = ("setupComplete", "usageMetadata", "goAway", "sessionResumptionUpdate", "toolCall")


class GeminiLiveBackend(AbstractTranscriptionBackend):
    """Gemini Live API (BidiGenerateContent) with input audio transcription."""

    service_name = "Gemini Live"
    requires_setup_ack = True

    def __init__(self,
                 api_key: str,
                 model: str = "models/gemini-2.0-flash-exp",
                 language: str = "en",
                 sample_rate: int = 16000,
                 instructions: str = "You transcribe audio in real time. Provide only the clean transcription of what was said."):
        super().__init__(api_key, language=language, sample_rate=sample_rate)
        self.model = model
        self.instructions = instructions

    @property
    def url(self) -> str:
        return f"{LIVE_URL}?key={self.api_key}"

    def setup_message(self) -> Dict[str, Any]:
        return {
            "setup": {
                "model": self.model,
                "generation_config": {
                    "response_modalities": ["TEXT"],
                },
                "system_instruction": {
                    "parts": [{"text": f"{self.instructions} Language: {self.language}."}],
                },
                "input_audio_transcription": {},
            }
        }

    def frame_audio(self, payload: PCMPayload) -> Dict[str, Any]:
        return {
            "realtimeInput": {
                "mediaChunks": [{
                    "mimeType": f"audio/pcm;rate={payload.sample_rate}",
                    "data": payload.data,
                }]
            }
        }

    def is_setup_ack(self, message: ServerMessage) -> bool:
        return message.message_type == "setupComplete"

    def parse_message(self, data: Dict[str, Any]) -> ServerMessage:
        if "error" in data:
            return ServerMessage(kind=MessageKind.ERROR, message_type="error", error=data["error"])

        content = data.get("serverContent")
        if isinstance(content, dict):
            return self._parse_server_content(content)

        for key in CONTROL_KEYS:
            if key in data:
                return ServerMessage(kind=MessageKind.CONTROL, message_type=key)

        return ServerMessage(kind=MessageKind.UNKNOWN, message_type=",".join(sorted(data)) or "empty")

    def _parse_server_content(self, content: Dict[str, Any]) -> ServerMessage:
        events = []
        partial = False

        # Input transcription fragments are never revised by the backend.
        input_text = (content.get("inputTranscription") or {}).get("text")
        event = self.make_event(input_text, TranscriptDirection.INPUT, is_final=True)
        if event:
            events.append(event)

        output_text = (content.get("outputTranscription") or {}).get("text")
        event = self.make_event(output_text, TranscriptDirection.OUTPUT, is_final=False)
        if event:
            events.append(event)
            partial = True

        for part in (content.get("modelTurn") or {}).get("parts") or []:
            event = self.make_event(part.get("text"), TranscriptDirection.OUTPUT, is_final=False)
            if event:
                events.append(event)
                partial = True

        if not events:
            # turnComplete, generationComplete, interrupted
            return ServerMessage(kind=MessageKind.CONTROL, message_type="serverContent")

        kind = MessageKind.PARTIAL if partial else MessageKind.FINAL
        return ServerMessage(kind=kind, message_type="serverContent", events=events)

    def get_stats(self) -> Dict[str, Any]:
        stats = super().get_stats()
        stats["model"] = self.model
        return stats
