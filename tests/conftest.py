"""Pytest configuration and fixtures for livescribe tests."""

import io
import json
import asyncio
import logging
import tempfile
import time
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import Mock

import numpy as np
import pytest
import soundfile as sf
from aiohttp import web, WSMsgType
from aiohttp.test_utils import TestServer
from pubsub import pub

from livescribe.models.audio import AudioChunk
from livescribe.transcription.gemini_backend import GeminiLiveBackend
from livescribe.transcription.openai_backend import OpenAIRealtimeBackend


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without network or devices")
    config.addinivalue_line("markers", "integration: tests against an in-process WebSocket server")


@pytest.fixture(autouse=True)
def reset_pubsub():
    """Drop every pub/sub listener between tests."""
    yield
    pub.unsubAll()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


def sine_wave(duration_seconds: float, sample_rate: int, freq: float = 440.0,
              amplitude: float = 0.5) -> np.ndarray:
    """Float sine wave in [-amplitude, amplitude]."""
    t = np.arange(int(duration_seconds * sample_rate)) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def make_chunk(samples: np.ndarray, sample_rate: int, container: str = "FLAC",
               sequence_number: int = 1) -> AudioChunk:
    """Wrap samples in an in-memory container, like ChunkRecorder does."""
    buffer = io.BytesIO()
    sf.write(buffer, samples, sample_rate, format=container)
    return AudioChunk(
        chunk_id=f"chunk_{sequence_number}",
        data=buffer.getvalue(),
        sample_rate=sample_rate,
        sequence_number=sequence_number,
        timestamp=0.0,
        container=container,
        num_frames=len(samples),
    )


@pytest.fixture
def sample_audio_chunk():
    """One second of 440Hz at 48kHz in a FLAC container."""
    samples = (sine_wave(1.0, 48000) * 32767).astype(np.int16)
    return make_chunk(samples, 48000)


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio factory for testing without audio hardware."""
    mock_instance = Mock()
    mock_stream = Mock()

    frames = np.full(1024, 1000, dtype=np.int16).tobytes()

    def read(num_frames, exception_on_overflow=True):
        time.sleep(0.001)
        return frames

    mock_stream.read.side_effect = read
    mock_instance.open.return_value = mock_stream
    mock_instance.get_device_count.return_value = 0

    factory = Mock(return_value=mock_instance)
    return {
        'factory': factory,
        'instance': mock_instance,
        'stream': mock_stream,
    }


class LocalOpenAIBackend(OpenAIRealtimeBackend):
    """OpenAI protocol pointed at a local test server."""

    def __init__(self, url: str, **kwargs):
        super().__init__(api_key="test-key", **kwargs)
        self._url = url

    @property
    def url(self) -> str:
        return self._url


class LocalGeminiBackend(GeminiLiveBackend):
    """Gemini protocol pointed at a local test server."""

    def __init__(self, url: str, **kwargs):
        super().__init__(api_key="test-key", **kwargs)
        self._url = url

    @property
    def url(self) -> str:
        return self._url


class FakeSpeechServer:
    """In-process WebSocket server standing in for a streaming speech backend."""

    def __init__(self, on_message: Optional[Callable[[web.WebSocketResponse, Dict[str, Any]], Any]] = None):
        self.on_message = on_message
        self.connections = 0
        self.messages: List[Dict[str, Any]] = []
        self.sockets: List[web.WebSocketResponse] = []

        app = web.Application()
        app.router.add_get("/ws", self._handler)
        self.server = TestServer(app)

    async def _handler(self, request):
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.connections += 1
        self.sockets.append(ws)

        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                data = json.loads(msg.data)
                self.messages.append(data)
                if self.on_message is not None:
                    await self.on_message(ws, data)
        return ws

    async def __aenter__(self):
        await self.server.start_server()
        return self

    async def __aexit__(self, *args):
        await self.close_clients()
        await self.server.close()

    @property
    def url(self) -> str:
        return str(self.server.make_url("/ws"))

    @property
    def audio_messages(self) -> List[Dict[str, Any]]:
        return [m for m in self.messages if m.get("type") == "input_audio_buffer.append"
                or "realtimeInput" in m]

    async def send(self, message) -> None:
        """Send a JSON object (or a raw string) to every connected client."""
        raw = message if isinstance(message, str) else json.dumps(message)
        for ws in self.sockets:
            if not ws.closed:
                await ws.send_str(raw)

    async def close_clients(self) -> None:
        for ws in self.sockets:
            if not ws.closed:
                await ws.close()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail after timeout."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


@pytest.fixture
def transcript_recorder():
    """Callable that records every TranscriptEvent it receives."""
    events = []

    def record(event):
        events.append(event)

    record.events = events
    return record
