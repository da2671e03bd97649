"""Audio capture module: microphone plus optional system audio, mixed and chunked."""

import logging
from threading import Thread, Event
from typing import Optional, Dict, Any, List, Callable, Union
from datetime import datetime

import numpy as np
import pyaudio

from ..errors import CaptureUnavailable
from ..models.audio import AudioStats, AudioChunk
from .recorder import ChunkRecorder, FullRecording


logger = logging.getLogger(__name__)


def mix_audio(first: np.ndarray, second: np.ndarray) -> np.ndarray:
    """Sum two int16 streams, clipping to the int16 range."""
    length = max(len(first), len(second))
    mixed = np.zeros(length, dtype=np.int32)
    mixed[:len(first)] += first
    mixed[:len(second)] += second
    return np.clip(mixed, -32768, 32767).astype(np.int16)


def list_input_devices(pyaudio_factory: Callable[[], Any] = pyaudio.PyAudio) -> List[Dict[str, Any]]:
    """List devices that can be opened for input."""
    instance = pyaudio_factory()
    try:
        devices = []
        for index in range(instance.get_device_count()):
            info = instance.get_device_info_by_index(index)
            if info.get('maxInputChannels', 0) > 0:
                devices.append({
                    "index": index,
                    "name": info.get('name', ''),
                    "channels": info.get('maxInputChannels'),
                    "default_sample_rate": info.get('defaultSampleRate'),
                })
        return devices
    finally:
        instance.terminate()


class AudioCapture:
    """Continuous microphone + system audio capture feeding a chunk callback."""

    def __init__(
        self,
        chunk_callback: Callable[[AudioChunk], None],
        sample_rate: int = 48000,
        frames_per_buffer: int = 1024,
        chunk_seconds: float = 2.0,
        container: str = "FLAC",
        system_audio_device: Optional[Union[int, str]] = None,
        pyaudio_factory: Optional[Callable[[], Any]] = None,
    ):
        """Initialize audio capture with specified parameters.

        Args:
            chunk_callback: Receives each completed AudioChunk (called from the capture thread)
            sample_rate: Native capture rate for both devices
            frames_per_buffer: Frames read per device read
            chunk_seconds: Length of the rolling transcription window
            container: soundfile format used for chunk containers
            system_audio_device: Loopback/monitor input index or name substring; None for mic only
            pyaudio_factory: Callable returning a PyAudio instance
        """
        self.chunk_callback = chunk_callback
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.channels = 1
        self.format = pyaudio.paInt16
        self.system_audio_device = system_audio_device
        self.pyaudio_factory = pyaudio_factory or pyaudio.PyAudio

        self.chunk_recorder = ChunkRecorder(
            sample_rate=sample_rate,
            chunk_seconds=chunk_seconds,
            channels=self.channels,
            container=container,
        )
        self.recording = FullRecording(sample_rate=sample_rate, channels=self.channels)

        # Recording thread management
        self.recording_thread: Optional[Thread] = None
        self.stop_event = Event()
        self.is_recording = False

        # Device handles
        self.pyaudio_instance = None
        self.mic_stream = None
        self.system_stream = None

        # Statistics tracking
        self.start_time: Optional[datetime] = None
        self.total_frames = 0
        self.chunks_emitted = 0

    def start_capture(self) -> None:
        """Open the devices and start capturing in a background thread.

        Raises:
            CaptureUnavailable: If the microphone cannot be opened
        """
        if self.is_recording:
            logger.warning("Capture already in progress")
            return

        logger.info("Starting audio capture")
        self.pyaudio_instance = self.pyaudio_factory()
        try:
            self.mic_stream = self._open_input_stream(device_index=None)
        except OSError as e:
            logger.error(f"Microphone unavailable: {e}")
            self._release_devices()
            raise CaptureUnavailable(f"Microphone unavailable: {e}") from e

        self.system_stream = self._open_system_stream()

        self.stop_event.clear()
        self.start_time = datetime.now()
        self.total_frames = 0
        self.chunks_emitted = 0
        self.chunk_recorder.reset()
        self.recording = FullRecording(sample_rate=self.sample_rate, channels=self.channels)

        self.recording_thread = Thread(target=self._record_continuously, daemon=True)
        self.recording_thread.name = "AudioCaptureThread"
        self.recording_thread.start()
        self.is_recording = True

    def stop_capture(self) -> None:
        """Stop capturing and release every device. Safe to call repeatedly."""
        if not self.is_recording:
            logger.debug("Capture already stopped")
            return

        logger.info("Stopping audio capture")
        self.stop_event.set()

        if self.recording_thread and self.recording_thread.is_alive():
            self.recording_thread.join(timeout=2.0)
            if self.recording_thread.is_alive():
                logger.warning("Capture thread did not stop cleanly")

        self._release_devices()
        self.is_recording = False

        final_chunk = self.chunk_recorder.flush()
        if final_chunk is not None:
            self._emit_chunk(final_chunk)

        logger.info(f"Capture stopped. Frames: {self.total_frames}, chunks: {self.chunks_emitted}")

    def _open_input_stream(self, device_index: Optional[int]):
        stream = self.pyaudio_instance.open(
            format=self.format,
            channels=self.channels,
            rate=self.sample_rate,
            input=True,
            input_device_index=device_index,
            frames_per_buffer=self.frames_per_buffer,
        )
        logger.info(f"Input stream opened (device={device_index if device_index is not None else 'default'}): "
                    f"{self.sample_rate}Hz, {self.frames_per_buffer} frames/buffer")
        return stream

    def _open_system_stream(self):
        """Open the system audio device. Failure is tolerated: capture continues mic-only."""
        if self.system_audio_device is None:
            return None
        try:
            device_index = self._resolve_device(self.system_audio_device)
            return self._open_input_stream(device_index)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not capture system audio, continuing with microphone only: {e}")
            return None

    def _resolve_device(self, device: Union[int, str]) -> int:
        if isinstance(device, int):
            return device

        wanted = device.lower()
        for index in range(self.pyaudio_instance.get_device_count()):
            info = self.pyaudio_instance.get_device_info_by_index(index)
            if info.get('maxInputChannels', 0) > 0 and wanted in info.get('name', '').lower():
                return index
        raise ValueError(f"No input device matching '{device}'")

    def _read_samples(self, stream) -> np.ndarray:
        data = stream.read(self.frames_per_buffer, exception_on_overflow=False)
        return np.frombuffer(data, dtype=np.int16)

    def _read_mixed(self) -> np.ndarray:
        mic = self._read_samples(self.mic_stream)
        if self.system_stream is None:
            return mic
        return mix_audio(mic, self._read_samples(self.system_stream))

    def _record_continuously(self) -> None:
        """Internal method: continuous capture loop in background thread."""
        try:
            while not self.stop_event.is_set():
                samples = self._read_mixed()
                self.total_frames += len(samples)
                self.recording.append(samples)
                for chunk in self.chunk_recorder.add_frames(samples):
                    self._emit_chunk(chunk)
        except OSError as e:
            logger.error(f"Audio device error, capture loop ended: {e}")

    def _emit_chunk(self, chunk: AudioChunk) -> None:
        self.chunks_emitted += 1
        try:
            self.chunk_callback(chunk)
        except Exception as e:
            logger.error(f"Chunk callback failed for {chunk.chunk_id}: {e}")

    def _release_devices(self) -> None:
        for stream in (self.mic_stream, self.system_stream):
            if stream is None:
                continue
            try:
                stream.stop_stream()
                stream.close()
            except OSError as e:
                logger.warning(f"Error closing audio stream: {e}")
        self.mic_stream = None
        self.system_stream = None

        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None

    def get_recording_stats(self) -> AudioStats:
        """Get current capture statistics."""
        duration = 0.0
        if self.start_time:
            duration = (datetime.now() - self.start_time).total_seconds()

        return AudioStats(
            is_recording=self.is_recording,
            duration_seconds=duration,
            sample_rate=self.sample_rate,
            frames_per_buffer=self.frames_per_buffer,
            total_frames=self.total_frames,
            chunks_emitted=self.chunks_emitted,
            system_audio=self.system_stream is not None,
        )

    def __del__(self):
        """Ensure devices are released on deletion."""
        if getattr(self, 'is_recording', False):
            self.stop_capture()
