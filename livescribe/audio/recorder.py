"""Rolling chunk recorder and full-session recording."""

import io
import time
import logging
import threading
from pathlib import Path
from typing import List, Optional, Union

import numpy as np
import soundfile as sf

from ..models.audio import AudioChunk

logger = logging.getLogger(__name__)


class ChunkRecorder:
    """Cuts the mixed stream into fixed windows, each in its own compressed container."""

    def __init__(self, sample_rate: int, chunk_seconds: float = 2.0,
                 channels: int = 1, container: str = "FLAC"):
        """Initialize chunk recorder.

        Args:
            sample_rate: Native rate of the incoming samples
            chunk_seconds: Window length; the recorder restarts after each window
            channels: Number of audio channels
            container: soundfile format name used for each window
        """
        if chunk_seconds <= 0:
            raise ValueError(f"chunk_seconds must be positive, got {chunk_seconds}")
        if not 1.0 <= chunk_seconds <= 3.0:
            logger.warning(f"Chunk window of {chunk_seconds}s is outside the usual 1-3s range")

        self.sample_rate = sample_rate
        self.chunk_seconds = chunk_seconds
        self.channels = channels
        self.container = container.upper()
        self.window_frames = max(1, int(sample_rate * chunk_seconds))

        self._pending: List[np.ndarray] = []
        self._pending_frames = 0
        self.sequence_number = 0
        self.lock = threading.Lock()

        logger.info(f"ChunkRecorder initialized: {chunk_seconds}s windows "
                    f"({self.window_frames} frames) as {self.container}")

    def add_frames(self, samples: np.ndarray) -> List[AudioChunk]:
        """Add int16 samples and return every window completed by them."""
        if samples.size == 0:
            return []

        chunks = []
        with self.lock:
            self._pending.append(samples)
            self._pending_frames += len(samples)

            while self._pending_frames >= self.window_frames:
                joined = np.concatenate(self._pending)
                window, rest = joined[:self.window_frames], joined[self.window_frames:]
                self._pending = [rest] if len(rest) else []
                self._pending_frames = len(rest)
                chunks.append(self._encode_window(window, final=False))

        return chunks

    def flush(self) -> Optional[AudioChunk]:
        """Emit the partially filled window as the final chunk, if any."""
        with self.lock:
            if not self._pending_frames:
                return None
            window = np.concatenate(self._pending)
            self._pending = []
            self._pending_frames = 0
            return self._encode_window(window, final=True)

    def reset(self) -> None:
        with self.lock:
            self._pending = []
            self._pending_frames = 0
            self.sequence_number = 0

    def _encode_window(self, window: np.ndarray, final: bool) -> AudioChunk:
        buffer = io.BytesIO()
        sf.write(buffer, window, self.sample_rate, format=self.container)

        self.sequence_number += 1
        chunk = AudioChunk(
            chunk_id=f"chunk_{self.sequence_number}",
            data=buffer.getvalue(),
            sample_rate=self.sample_rate,
            sequence_number=self.sequence_number,
            timestamp=time.time(),
            channels=self.channels,
            container=self.container,
            num_frames=len(window),
            final=final,
        )
        logger.debug(f"Cut {chunk.chunk_id}: {chunk.num_frames} frames, "
                     f"{len(chunk.data)} bytes, final={final}")
        return chunk


class FullRecording:
    """The whole mixed stream, buffered in memory and written to disk once."""

    def __init__(self, sample_rate: int, channels: int = 1):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frames: List[np.ndarray] = []
        self.total_frames = 0
        self.saved_path: Optional[Path] = None
        self.lock = threading.Lock()

    def append(self, samples: np.ndarray) -> None:
        with self.lock:
            self.frames.append(samples)
            self.total_frames += len(samples)

    @property
    def duration_seconds(self) -> float:
        return self.total_frames / self.sample_rate if self.sample_rate else 0.0

    def is_empty(self) -> bool:
        return self.total_frames == 0

    def save(self, filepath: Union[str, Path]) -> Optional[Path]:
        """Write the recording to a file. The format follows the file extension.

        Args:
            filepath: Destination path

        Returns:
            Path written, the earlier path if already saved, or None if empty
        """
        with self.lock:
            if self.saved_path is not None:
                logger.warning(f"Recording already saved to {self.saved_path}, not writing again")
                return self.saved_path

            if not self.frames:
                logger.warning("No audio data to save")
                return None

            path = Path(filepath)
            path.parent.mkdir(parents=True, exist_ok=True)
            try:
                sf.write(str(path), np.concatenate(self.frames), self.sample_rate)
            except Exception as e:
                logger.error(f"Error saving audio file: {e}")
                raise

            self.saved_path = path
            self.frames = []

        logger.info(f"Audio saved to {path} ({self.duration_seconds:.1f}s)")
        return path
