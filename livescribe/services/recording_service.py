"""Recording service: capture -> encode -> stream -> transcript, on one event loop."""

import asyncio
import logging
from typing import Callable, Optional, Dict, Any

from ..audio.audio_pub import AudioPublisher
from ..audio.capture import AudioCapture
from ..audio.encoder import ChunkEncoder
from ..config import LiveScribeConfig
from ..errors import ConnectionFailed, DecodeError
from ..models.audio import AudioChunk
from ..models.session import RecordingInfo
from ..models.transcription import TranscriptEvent
from ..storage.recording_store import RecordingStore
from ..transcription.publisher import TranscriptionPublisher
from ..transcription.registry import TranscriptionSessionManager
from ..transcription.transcript import RollingTranscript

logger = logging.getLogger(__name__)

AUDIO_TOPIC = "audio.chunk"
TRANSCRIPT_TOPIC = "transcription.live"

_END_OF_CAPTURE = object()


class RecordingService:
    """Manages one recording at a time: devices, chunk streaming and the final file."""

    def __init__(self,
                 config: LiveScribeConfig,
                 manager: TranscriptionSessionManager,
                 store: Optional[RecordingStore] = None,
                 capture_factory: Callable[..., AudioCapture] = AudioCapture,
                 encoder: Optional[ChunkEncoder] = None,
                 drain_timeout: float = 5.0):
        """Initialize recording service.

        Args:
            config: Application configuration
            manager: Shared transcription session registry
            store: Where finished recordings go; built from config if None
            capture_factory: Builds the AudioCapture (injected in tests)
            encoder: Chunk encoder; built from config if None
            drain_timeout: Seconds stop_recording() waits for queued chunks to be sent
        """
        self.config = config
        self.manager = manager
        self.store = store or RecordingStore(config.get_data_directory())
        self.capture_factory = capture_factory
        self.drain_timeout = drain_timeout
        self.encoder = encoder or ChunkEncoder(
            target_sample_rate=config.get('transcription.sample_rate', 16000))

        self.audio_publisher = AudioPublisher(AUDIO_TOPIC)
        self.transcript_publisher = TranscriptionPublisher(TRANSCRIPT_TOPIC)
        self.transcript = RollingTranscript(TRANSCRIPT_TOPIC)

        self.audio_capture: Optional[AudioCapture] = None
        self.session_id: Optional[str] = None
        self.chunks_sent = 0
        self.chunks_dropped = 0

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._forwarder: Optional[asyncio.Task] = None
        self._on_transcript: Optional[Callable[[TranscriptEvent], None]] = None

    @property
    def is_recording(self) -> bool:
        return self.audio_capture is not None and self.audio_capture.is_recording

    async def preconnect(self) -> None:
        """Open the transcription connection before recording starts."""
        await self.manager.preconnect()

    async def start_recording(self,
                              on_transcript: Optional[Callable[[TranscriptEvent], None]] = None) -> str:
        """Start capture and live transcription.

        Args:
            on_transcript: Called with every TranscriptEvent on the event loop

        Returns:
            Transcription session id

        Raises:
            CaptureUnavailable: Microphone could not be opened; nothing was started
            ConnectionFailed: Backend unreachable; capture was stopped again
        """
        if self.is_recording:
            raise RuntimeError("Recording already in progress")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._on_transcript = on_transcript
        self.chunks_sent = 0
        self.chunks_dropped = 0
        self.transcript.clear()

        self.audio_capture = self.capture_factory(
            chunk_callback=self.audio_publisher.publish_audio_chunk,
            sample_rate=self.config.get('audio.sample_rate', 48000),
            frames_per_buffer=self.config.get('audio.frames_per_buffer', 1024),
            chunk_seconds=self.config.get('audio.chunk_seconds', 2.0),
            container=self.config.get('audio.container', 'FLAC'),
            system_audio_device=self.config.get('audio.system_audio_device'),
        )
        self.audio_publisher.subscribe(self._on_audio_chunk)
        try:
            self.audio_capture.start_capture()
        except Exception:
            self.audio_publisher.unsubscribe(self._on_audio_chunk)
            self.audio_capture = None
            raise

        try:
            session_id = await self.manager.start_session()
        except ConnectionFailed:
            logger.error("Transcription backend unreachable, stopping capture")
            self.stop_capture()
            self.audio_publisher.unsubscribe(self._on_audio_chunk)
            self.audio_capture = None
            raise

        self.session_id = session_id
        self.manager.register_callback(session_id, self._handle_transcript)
        self._forwarder = asyncio.ensure_future(self._forward_chunks())
        logger.info(f"Recording started (session {session_id})")
        return session_id

    def stop_capture(self) -> None:
        """Release the microphone and system audio immediately."""
        if self.audio_capture is not None:
            self.audio_capture.stop_capture()

    async def stop_recording(self) -> Optional[RecordingInfo]:
        """Stop capture, send the chunks already captured, tear down streaming and save.

        Devices are released before anything is awaited. Chunks still queued
        (including the final partial window) are sent, waiting at most
        `drain_timeout` seconds.

        Returns:
            RecordingInfo of the saved file, or None if nothing was recorded
        """
        if self.audio_capture is None:
            logger.warning("No recording in progress")
            return None

        # Devices first, so OS recording indicators drop before the socket closes.
        self.stop_capture()
        capture, self.audio_capture = self.audio_capture, None
        self.audio_publisher.unsubscribe(self._on_audio_chunk)

        if self._forwarder is not None:
            await self._drain_forwarder()
        self._queue = None

        if self.session_id is not None:
            await self.manager.remove_listener(self.session_id)
            self.session_id = None

        info = self.store.save_recording(capture.recording)
        logger.info(f"Recording stopped: sent={self.chunks_sent}, dropped={self.chunks_dropped}")
        return info

    async def _drain_forwarder(self) -> None:
        """Send what capture already produced, including the final chunk, then stop."""
        # Queued behind any chunk callbacks stop_capture() scheduled.
        self._loop.call_soon_threadsafe(self._queue.put_nowait, _END_OF_CAPTURE)
        try:
            await asyncio.wait_for(asyncio.shield(self._forwarder), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Forwarder did not drain within {self.drain_timeout}s, "
                           f"discarding {self._queue.qsize()} unsent chunks")
            self._forwarder.cancel()
            await asyncio.gather(self._forwarder, return_exceptions=True)
        except Exception:
            logger.exception("Chunk forwarder failed")
        self._forwarder = None

    def _on_audio_chunk(self, chunk: AudioChunk) -> None:
        """pubsub listener; runs on the capture thread."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, chunk)

    async def _forward_chunks(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            chunk = await self._queue.get()
            if chunk is _END_OF_CAPTURE:
                logger.debug("Forwarder drained")
                return
            try:
                payload = await loop.run_in_executor(None, self.encoder.encode, chunk)
            except DecodeError as e:
                self.chunks_dropped += 1
                logger.warning(f"Dropping undecodable chunk: {e}")
                continue
            except Exception:
                self.chunks_dropped += 1
                logger.exception(f"Encoding {chunk.chunk_id} failed, dropping it")
                continue

            if await self.manager.send_audio_chunk(payload):
                self.chunks_sent += 1
            else:
                self.chunks_dropped += 1

    def _handle_transcript(self, event: TranscriptEvent) -> None:
        self.transcript_publisher.publish_transcript_event(event)
        if self._on_transcript is not None:
            self._on_transcript(event)

    def shutdown(self) -> None:
        """Release pub/sub subscriptions. Call once the service is no longer used."""
        self.transcript.unsubscribe()

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "is_recording": self.is_recording,
            "session_id": self.session_id,
            "chunks_sent": self.chunks_sent,
            "chunks_dropped": self.chunks_dropped,
            "chunks_published": self.audio_publisher.chunks_published,
            "chunks_encoded": self.encoder.chunks_encoded,
            "transcript_events": self.transcript_publisher.events_published,
            "transcription": self.manager.get_stats(),
        }
        if self.audio_capture is not None:
            stats["capture"] = self.audio_capture.get_recording_stats()
        return stats
