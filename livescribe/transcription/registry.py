"""Session registry: many logical listeners sharing one transcription connection."""

import time
import uuid
import logging
from collections import OrderedDict
from typing import Callable, Dict, Any, Optional

from .base import AbstractTranscriptionBackend
from .session import TranscriptionSession
from ..models.audio import PCMPayload
from ..models.session import SessionState
from ..models.transcription import TranscriptEvent

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[TranscriptEvent], None]


class TranscriptionSessionManager:
    """Maps session ids to transcript callbacks over a single shared connection.

    The connection is opened on first use, reused while open or connecting,
    and closed when the last listener is removed. Every event is delivered to
    every listener in registration order.
    """

    def __init__(self,
                 backend: AbstractTranscriptionBackend,
                 session_factory: Callable[..., TranscriptionSession] = TranscriptionSession,
                 connect_timeout: float = 10.0,
                 setup_timeout: float = 10.0):
        """Initialize session manager.

        Args:
            backend: Speech backend protocol shared by every connection
            session_factory: Builds a TranscriptionSession (injected in tests)
            connect_timeout: Seconds allowed for the WebSocket handshake
            setup_timeout: Seconds allowed for the setup acknowledgement
        """
        self.backend = backend
        self.session_factory = session_factory
        self.connect_timeout = connect_timeout
        self.setup_timeout = setup_timeout

        self.callbacks: "OrderedDict[str, TranscriptCallback]" = OrderedDict()
        self._session: Optional[TranscriptionSession] = None
        self.connections_opened = 0

        logger.info(f"TranscriptionSessionManager initialized for {backend.service_name}")

    @property
    def session(self) -> Optional[TranscriptionSession]:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state if self._session else SessionState.IDLE

    @property
    def listener_count(self) -> int:
        return len(self.callbacks)

    def is_connected(self) -> bool:
        return self._session is not None and self._session.is_open

    async def start_session(self) -> str:
        """Make sure the connection is open and return a new session id.

        Raises:
            ConnectionFailed: If the backend cannot be reached. Retrying is up to the caller.
        """
        session_id = f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"
        await self._ensure_session()
        logger.info(f"Started transcription session {session_id}")
        return session_id

    async def preconnect(self) -> None:
        """Open the connection ahead of the first start_session() call."""
        await self._ensure_session()

    def register_callback(self, session_id: str, callback: TranscriptCallback) -> None:
        """Associate a callback with a session id without touching the connection."""
        if session_id in self.callbacks:
            logger.debug(f"Replacing callback for session {session_id}")
        self.callbacks[session_id] = callback
        logger.debug(f"Registered listener {session_id} ({len(self.callbacks)} total)")

    async def register_listener(self, session_id: str, callback: TranscriptCallback) -> None:
        """Register a callback and connect if no connection exists yet."""
        self.register_callback(session_id, callback)
        await self._ensure_session()

    async def remove_listener(self, session_id: str) -> None:
        """Deregister a callback. Removing the last one closes the connection."""
        if self.callbacks.pop(session_id, None) is None:
            logger.debug(f"No listener registered for session {session_id}")
            return

        logger.debug(f"Removed listener {session_id} ({len(self.callbacks)} remaining)")
        if not self.callbacks and self._session is not None:
            logger.info("Last listener removed, closing transcription connection")
            await self._close_session()

    remove_callback = remove_listener

    async def send_audio_chunk(self, payload: PCMPayload) -> bool:
        """Forward one PCM payload. Dropped with a warning when not connected."""
        if self._session is None:
            logger.warning(f"No transcription session, dropping audio {payload.chunk_id}")
            return False
        return await self._session.send_audio_chunk(payload)

    async def close(self) -> None:
        """Drop every listener and close the connection."""
        self.callbacks.clear()
        await self._close_session()

    async def _ensure_session(self) -> None:
        session = self._session
        if session is None or session.state in (SessionState.CLOSING, SessionState.CLOSED):
            session = self.session_factory(
                backend=self.backend,
                on_event=self._dispatch,
                on_close=self._on_session_closed,
                connect_timeout=self.connect_timeout,
                setup_timeout=self.setup_timeout,
            )
            self._session = session
            self.connections_opened += 1
        # Concurrent callers land here with the same session and share its connect.
        await session.open()

    async def _close_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()

    def _on_session_closed(self, session: TranscriptionSession) -> None:
        if self._session is session:
            logger.info("Transcription connection closed, discarding session state")
            self._session = None

    def _dispatch(self, event: TranscriptEvent) -> None:
        for session_id, callback in list(self.callbacks.items()):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Listener {session_id} failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        stats = {
            "backend": self.backend.service_name,
            "listeners": len(self.callbacks),
            "connections_opened": self.connections_opened,
            "state": self.state.value,
        }
        if self._session is not None:
            stats.update(self._session.get_stats())
        return stats
