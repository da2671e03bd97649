"""Streaming transcription session over a single WebSocket connection."""

import json
import asyncio
import logging
from typing import Any, Callable, Dict, Optional, Union

import aiohttp

from .base import AbstractTranscriptionBackend
from ..errors import ConnectionFailed, ProtocolError
from ..models.audio import PCMPayload
from ..models.session import SessionState
from ..models.transcription import MessageKind, ServerMessage, TranscriptEvent

logger = logging.getLogger(__name__)


class TranscriptionSession:
    """Owns one connection to a speech backend and turns its events into TranscriptEvents.

    State machine: IDLE -> CONNECTING -> OPEN -> CLOSING -> CLOSED. A session is
    single-use: once closed it cannot be reopened.
    """

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 on_event: Callable[[TranscriptEvent], None],
                 on_close: Optional[Callable[["TranscriptionSession"], None]] = None,
                 connect_timeout: float = 10.0,
                 setup_timeout: float = 10.0,
                 http_session_factory: Callable[[], aiohttp.ClientSession] = aiohttp.ClientSession):
        """Initialize transcription session.

        Args:
            backend: Protocol description of the speech backend
            on_event: Called with every partial/final TranscriptEvent, in arrival order
            on_close: Called once when the session reaches CLOSED
            connect_timeout: Seconds allowed for the WebSocket handshake
            setup_timeout: Seconds allowed for the backend to acknowledge setup
            http_session_factory: Creates the aiohttp.ClientSession for the connection
        """
        self.backend = backend
        self.on_event = on_event
        self.on_close = on_close
        self.connect_timeout = connect_timeout
        self.setup_timeout = setup_timeout
        self.http_session_factory = http_session_factory

        self.state = SessionState.IDLE
        self.remote_session_id: Optional[str] = None

        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._close_notified = False

        # Statistics
        self.messages_sent = 0
        self.chunks_dropped = 0
        self.events_received = 0
        self.protocol_errors = 0

    @property
    def is_open(self) -> bool:
        """True only while audio may be sent."""
        return self.state is SessionState.OPEN

    async def open(self) -> None:
        """Connect and send the setup message.

        Concurrent callers share a single in-flight connect.

        Raises:
            ConnectionFailed: If the backend is unreachable, rejects setup, or the
                              session was closed
        """
        if self.state is SessionState.OPEN:
            return
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            raise ConnectionFailed("Session is closed; start a new session")

        if self._connect_task is None:
            self.state = SessionState.CONNECTING
            self._connect_task = asyncio.ensure_future(self._connect())

        task = self._connect_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise ConnectionFailed("Session closed while connecting")
            raise

    async def _connect(self) -> None:
        service = self.backend.service_name
        logger.info(f"Connecting to {service}...")
        self._http = self.http_session_factory()
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(self.backend.url, headers=self.backend.headers()),
                timeout=self.connect_timeout,
            )
            await self._send_json(self.backend.setup_message())
            logger.debug(f"Setup message sent to {service}")

            if self.backend.requires_setup_ack:
                await asyncio.wait_for(self._await_setup_ack(), timeout=self.setup_timeout)
        except ConnectionFailed:
            await self._fail_connect()
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            await self._fail_connect()
            raise ConnectionFailed(f"Could not connect to {service}: {e}") from e

        self.state = SessionState.OPEN
        self._reader_task = asyncio.ensure_future(self._read_loop())
        logger.info(f"{service} session open")

    async def _await_setup_ack(self) -> None:
        while True:
            msg = await self._ws.receive()
            if msg.type not in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                raise ConnectionFailed(f"Connection ended during setup ({msg.type.name})")
            try:
                message = self.backend.classify(msg.data)
            except ProtocolError as e:
                logger.warning(f"Ignoring message during setup: {e}")
                continue
            if self.backend.is_setup_ack(message):
                logger.debug(f"{self.backend.service_name} acknowledged setup")
                return
            if message.kind is MessageKind.ERROR:
                raise ConnectionFailed(f"Setup rejected by {self.backend.service_name}: {message.error}")
            logger.debug(f"Ignoring '{message.message_type}' before setup ack")

    async def _fail_connect(self) -> None:
        await self._release_transport()
        self.state = SessionState.CLOSED
        self._notify_closed()

    async def send_audio_chunk(self, payload: PCMPayload) -> bool:
        """Send one PCM payload. Drops it silently (with a warning) unless OPEN.

        Returns:
            True if the append message was written to the socket
        """
        if self.state is not SessionState.OPEN or self._ws is None or self._ws.closed:
            self.chunks_dropped += 1
            logger.warning(f"Session is {self.state.value}, dropping audio {payload.chunk_id}")
            return False

        try:
            await self._send_json(self.backend.frame_audio(payload))
        except (ConnectionError, aiohttp.ClientError) as e:
            self.chunks_dropped += 1
            logger.warning(f"Failed to send audio {payload.chunk_id}: {e}")
            return False

        self.messages_sent += 1
        logger.debug(f"Sent audio {payload.chunk_id} ({payload.num_samples} samples)")
        return True

    async def _send_json(self, message: Dict[str, Any]) -> None:
        await self._ws.send_str(json.dumps(message))

    async def _read_loop(self) -> None:
        async for msg in self._ws:
            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                self._handle_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"WebSocket error from {self.backend.service_name}: {self._ws.exception()}")
                break

        if self.state is SessionState.OPEN:
            logger.info(f"{self.backend.service_name} closed the connection "
                        f"(code={self._ws.close_code})")
            self.state = SessionState.CLOSING
            await self._release_transport()
            self.state = SessionState.CLOSED
            self._notify_closed()

    def _handle_frame(self, raw: Union[str, bytes]) -> None:
        try:
            self._handle_message(self.backend.classify(raw))
        except ProtocolError as e:
            self.protocol_errors += 1
            logger.warning(f"Ignoring message: {e}")

    def _handle_message(self, message: ServerMessage) -> None:
        if message.kind is MessageKind.UNKNOWN:
            raise ProtocolError(f"Unrecognized message type '{message.message_type}'")

        if message.kind is MessageKind.ERROR:
            logger.error(f"{self.backend.service_name} error ({message.message_type}): {message.error}")
            return

        if message.kind is MessageKind.CONTROL:
            if message.session_id:
                self.remote_session_id = message.session_id
                logger.info(f"{self.backend.service_name} session created: {message.session_id}")
            logger.debug(f"Control message: {message.message_type}")
            return

        for event in message.events:
            self.events_received += 1
            try:
                self.on_event(event)
            except Exception as e:
                logger.error(f"Transcript handler failed: {e}")

    async def close(self) -> None:
        """Close the connection. Unsent audio is discarded. Safe to call repeatedly."""
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        if self.state is SessionState.IDLE:
            self.state = SessionState.CLOSED
            self._notify_closed()
            return

        logger.info(f"Closing {self.backend.service_name} session")
        self.state = SessionState.CLOSING

        current = asyncio.current_task()
        for task in (self._connect_task, self._reader_task):
            if task is not None and not task.done() and task is not current:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        await self._release_transport()
        self.state = SessionState.CLOSED
        self._notify_closed()

    async def _release_transport(self) -> None:
        if self._ws is not None and not self._ws.closed:
            try:
                await self._ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning(f"Error closing WebSocket: {e}")
        if self._http is not None and not self._http.closed:
            await self._http.close()

    def _notify_closed(self) -> None:
        if self._close_notified:
            return
        self._close_notified = True
        logger.info(f"{self.backend.service_name} session closed "
                    f"(sent={self.messages_sent}, dropped={self.chunks_dropped}, "
                    f"events={self.events_received})")
        if self.on_close is not None:
            self.on_close(self)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "remote_session_id": self.remote_session_id,
            "messages_sent": self.messages_sent,
            "chunks_dropped": self.chunks_dropped,
            "events_received": self.events_received,
            "protocol_errors": self.protocol_errors,
        }
