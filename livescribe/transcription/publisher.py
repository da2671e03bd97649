"""Re-publishes transcript events from the session registry onto a pub/sub topic."""

import logging
from typing import Callable
from pubsub import pub
from ..models.transcription import TranscriptEvent

logger = logging.getLogger(__name__)


class TranscriptionPublisher:
    """Fans TranscriptEvents out to in-process consumers such as RollingTranscript."""

    def __init__(self, topic: str = "transcription.live"):
        """Initialize transcription publisher.

        Args:
            topic: Pub/sub topic carrying TranscriptEvent objects as `event`
        """
        self.topic = topic
        self.events_published = 0
        self.finals_published = 0
        logger.info(f"TranscriptionPublisher initialized with topic: {topic}")

    def publish_transcript_event(self, event: TranscriptEvent) -> None:
        self.events_published += 1
        if event.is_final:
            self.finals_published += 1
        pub.sendMessage(self.topic, event=event)
        logger.debug(f"Published {event.direction.value} transcript (final={event.is_final}): "
                     f"{event.text[:40]}")

    def as_listener(self) -> Callable[[TranscriptEvent], None]:
        """Callback for TranscriptionSessionManager.register_callback()."""
        return self.publish_transcript_event
