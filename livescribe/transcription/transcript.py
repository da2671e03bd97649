"""Client-side rolling transcript built from published transcript events.

Events are appended in arrival order. There is no deduplication and no
reordering: partial fragments stay in the event list, and `text` joins the
final fragments plus the newest partial still pending.
"""

import logging
import threading
from typing import List, Optional
from pubsub import pub

from ..models.transcription import TranscriptDirection, TranscriptEvent

logger = logging.getLogger(__name__)


class RollingTranscript:
    """Subscribes to a transcript topic and keeps the running transcript."""

    def __init__(self, topic: str = "transcription.live",
                 direction: Optional[TranscriptDirection] = TranscriptDirection.INPUT):
        """Initialize rolling transcript.

        Args:
            topic: Topic carrying TranscriptEvents
            direction: Only keep events in this direction; None keeps both
        """
        self.topic = topic
        self.direction = direction
        self.events: List[TranscriptEvent] = []
        self.lock = threading.RLock()
        self._subscribed = False

        pub.subscribe(self._on_event, topic)
        self._subscribed = True
        logger.info(f"RollingTranscript subscribed to {topic}")

    def _on_event(self, event: TranscriptEvent) -> None:
        if self.direction is not None and event.direction is not self.direction:
            return
        with self.lock:
            self.events.append(event)
        logger.debug(f"Transcript now has {len(self.events)} events")

    @property
    def final_segments(self) -> List[str]:
        with self.lock:
            return [event.text for event in self.events if event.is_final]

    @property
    def pending_partial(self) -> Optional[str]:
        """Newest partial fragment received after the last final one."""
        with self.lock:
            for event in reversed(self.events):
                if event.is_final:
                    return None
                return event.text
            return None

    @property
    def text(self) -> str:
        parts = self.final_segments
        partial = self.pending_partial
        if partial:
            parts.append(partial)
        return " ".join(parts)

    def clear(self) -> None:
        with self.lock:
            self.events.clear()

    def unsubscribe(self) -> None:
        if self._subscribed:
            pub.unsubscribe(self._on_event, self.topic)
            self._subscribed = False
