"""Hands finished audio chunks from the capture thread to pub/sub listeners."""

import logging
from typing import Callable
from pubsub import pub
from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)

ChunkListener = Callable[[AudioChunk], None]


class AudioPublisher:
    """Owns one audio chunk topic: listeners subscribe here, AudioCapture publishes here."""

    def __init__(self, topic: str = "audio.chunk"):
        """Initialize audio publisher.

        Args:
            topic: Pub/sub topic carrying AudioChunk objects as `chunk`
        """
        self.topic = topic
        self.chunks_published = 0
        self.final_chunks = 0
        logger.info(f"AudioPublisher initialized with topic: {topic}")

    def subscribe(self, listener: ChunkListener) -> None:
        # pubsub keeps weak references; the caller must keep the listener alive.
        pub.subscribe(listener, self.topic)

    def unsubscribe(self, listener: ChunkListener) -> None:
        if pub.isSubscribed(listener, self.topic):
            pub.unsubscribe(listener, self.topic)

    def publish_audio_chunk(self, chunk: AudioChunk) -> None:
        """Publish one chunk. Runs on the capture thread."""
        self.chunks_published += 1
        if chunk.final:
            self.final_chunks += 1
        pub.sendMessage(self.topic, chunk=chunk)
        logger.debug(f"Published {chunk.chunk_id} ({chunk.duration_ms}ms, final={chunk.final})")
