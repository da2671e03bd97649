"""Chunk encoder: compressed container chunk -> base64 PCM16 at the transport rate.

Quantization is symmetric: samples are clipped to [-1.0, 1.0], scaled by
32767 and rounded to nearest, so -32768 is never produced.
"""

import io
import base64
import logging
from math import gcd

import numpy as np
import soundfile as sf
from scipy import signal

from ..errors import DecodeError
from ..models.audio import AudioChunk, PCMPayload

logger = logging.getLogger(__name__)

PCM16_MAX = 32767


def quantize_pcm16(samples: np.ndarray) -> np.ndarray:
    """Convert float samples in [-1.0, 1.0] to int16 with a symmetric clamp."""
    clipped = np.clip(samples.astype(np.float64), -1.0, 1.0)
    return np.round(clipped * PCM16_MAX).astype('<i2')


def pcm16_to_base64(pcm: np.ndarray) -> str:
    """Serialize int16 samples (little-endian) to base64."""
    return base64.b64encode(np.asarray(pcm, dtype='<i2').tobytes()).decode('ascii')


def base64_to_pcm16(data: str) -> np.ndarray:
    """Inverse of pcm16_to_base64."""
    return np.frombuffer(base64.b64decode(data), dtype='<i2')


def resample(samples: np.ndarray, source_rate: int, target_rate: int) -> np.ndarray:
    """Resample mono float samples with a polyphase filter."""
    if source_rate == target_rate:
        return samples
    divisor = gcd(source_rate, target_rate)
    up, down = target_rate // divisor, source_rate // divisor
    return signal.resample_poly(samples, up, down).astype(np.float32)


class ChunkEncoder:
    """Converts one AudioChunk into one PCMPayload."""

    def __init__(self, target_sample_rate: int = 16000):
        """Initialize chunk encoder.

        Args:
            target_sample_rate: Rate negotiated with the speech backend
        """
        self.target_sample_rate = target_sample_rate
        self.chunks_encoded = 0
        self.chunks_failed = 0

    def decode(self, chunk: AudioChunk) -> np.ndarray:
        """Decode a chunk to mono float32 samples at the target rate.

        Raises:
            DecodeError: If the chunk is empty or its container is unreadable
        """
        if not chunk.data:
            raise DecodeError(f"{chunk.chunk_id} is empty")

        try:
            samples, native_rate = sf.read(io.BytesIO(chunk.data), dtype='float32', always_2d=True)
        except (RuntimeError, ValueError, TypeError) as e:
            raise DecodeError(f"Cannot decode {chunk.chunk_id}: {e}") from e

        if samples.shape[0] == 0:
            raise DecodeError(f"{chunk.chunk_id} decoded to zero frames")

        # Channel 0 only
        mono = samples[:, 0]
        return resample(mono, native_rate, self.target_sample_rate)

    def encode(self, chunk: AudioChunk) -> PCMPayload:
        """Decode, resample, quantize and base64-encode one chunk.

        Raises:
            DecodeError: Propagated from decode(); callers drop the chunk
        """
        try:
            samples = self.decode(chunk)
        except DecodeError:
            self.chunks_failed += 1
            raise

        pcm = quantize_pcm16(samples)
        self.chunks_encoded += 1
        logger.debug(f"Encoded {chunk.chunk_id}: {len(pcm)} samples @ {self.target_sample_rate}Hz")
        return PCMPayload(
            data=pcm16_to_base64(pcm),
            sample_rate=self.target_sample_rate,
            num_samples=len(pcm),
            chunk_id=chunk.chunk_id,
        )
