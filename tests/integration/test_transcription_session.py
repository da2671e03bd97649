"""Integration tests for TranscriptionSession against an in-process WebSocket server."""

import asyncio
from datetime import datetime

import pytest

from conftest import FakeSpeechServer, LocalGeminiBackend, LocalOpenAIBackend, wait_until
from livescribe.errors import ConnectionFailed
from livescribe.models.audio import PCMPayload
from livescribe.models.session import SessionState
from livescribe.models.transcription import TranscriptDirection
from livescribe.transcription.session import TranscriptionSession

COMPLETED = "conversation.item.input_audio_transcription.completed"


def payload(n: int) -> PCMPayload:
    return PCMPayload(data=f"chunk{n}", sample_rate=16000, num_samples=1, chunk_id=f"chunk_{n}")


def make_session(backend, on_event=None, closed=None, **kwargs):
    def on_close(session):
        if closed is not None:
            closed.append(session)

    return TranscriptionSession(backend, on_event or (lambda e: None), on_close=on_close, **kwargs)


@pytest.mark.integration
class TestOpenAISession:

    @pytest.mark.asyncio
    async def test_open_sends_setup_first(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url))

            await session.open()
            await wait_until(lambda: len(server.messages) == 1)

            assert session.state is SessionState.OPEN
            assert server.messages[0]["type"] == "session.update"
            await session.close()

    @pytest.mark.asyncio
    async def test_each_chunk_is_one_append_message_in_order(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url))
            await session.open()

            for n in range(1, 6):
                assert await session.send_audio_chunk(payload(n)) is True
            await wait_until(lambda: len(server.audio_messages) == 5)

            assert [m["audio"] for m in server.audio_messages] == [f"chunk{n}" for n in range(1, 6)]
            assert session.messages_sent == 5
            await session.close()

    @pytest.mark.asyncio
    async def test_send_before_open_is_dropped(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url))

            assert await session.send_audio_chunk(payload(1)) is False

            assert session.chunks_dropped == 1
            assert server.connections == 0

    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url))
            await session.open()
            await session.close()

            assert await session.send_audio_chunk(payload(1)) is False
            await asyncio.sleep(0.05)
            assert server.audio_messages == []

    @pytest.mark.asyncio
    async def test_final_transcript_delivered_once(self, transcript_recorder):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), on_event=transcript_recorder)
            await session.open()

            await server.send({"type": COMPLETED, "transcript": "hello world"})
            await wait_until(lambda: len(transcript_recorder.events) == 1)
            await asyncio.sleep(0.05)

            assert len(transcript_recorder.events) == 1
            data = transcript_recorder.events[0].to_dict()
            assert data["transcription"] == "hello world"
            assert data["type"] == "input"
            datetime.fromisoformat(data["timestamp"])
            await session.close()

    @pytest.mark.asyncio
    async def test_events_delivered_in_arrival_order(self, transcript_recorder):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), on_event=transcript_recorder)
            await session.open()

            await server.send({"type": "conversation.item.input_audio_transcription.delta", "delta": "hel"})
            await server.send({"type": COMPLETED, "transcript": "hello"})
            await server.send({"type": "response.content_part.added",
                               "part": {"type": "text", "text": "hi there"}})
            await wait_until(lambda: len(transcript_recorder.events) == 3)

            events = transcript_recorder.events
            assert [e.text for e in events] == ["hel", "hello", "hi there"]
            assert [e.is_final for e in events] == [False, True, False]
            assert events[2].direction is TranscriptDirection.OUTPUT
            await session.close()

    @pytest.mark.asyncio
    async def test_invalid_json_is_ignored(self, transcript_recorder):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), on_event=transcript_recorder)
            await session.open()

            await server.send("this is not json")
            await server.send({"type": "totally.unknown"})
            await wait_until(lambda: session.protocol_errors == 2)

            assert session.state is SessionState.OPEN
            assert transcript_recorder.events == []

            await server.send({"type": COMPLETED, "transcript": "still alive"})
            await wait_until(lambda: len(transcript_recorder.events) == 1)
            await session.close()

    @pytest.mark.asyncio
    async def test_backend_error_keeps_session_open(self, transcript_recorder):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), on_event=transcript_recorder)
            await session.open()

            await server.send({"type": "error", "error": {"message": "rate limited"}})
            await server.send({"type": "session.created", "session": {"id": "sess_42"}})
            await wait_until(lambda: session.remote_session_id == "sess_42")

            assert session.state is SessionState.OPEN
            assert transcript_recorder.events == []
            await session.close()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_reader(self):
        received = []

        def handler(event):
            received.append(event)
            raise RuntimeError("consumer bug")

        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), on_event=handler)
            await session.open()

            await server.send({"type": COMPLETED, "transcript": "one"})
            await server.send({"type": COMPLETED, "transcript": "two"})
            await wait_until(lambda: len(received) == 2)

            assert session.state is SessionState.OPEN
            await session.close()

    @pytest.mark.asyncio
    async def test_unreachable_backend_raises(self):
        closed = []
        session = make_session(LocalOpenAIBackend("http://127.0.0.1:1/ws"), closed=closed)

        with pytest.raises(ConnectionFailed):
            await session.open()

        assert session.state is SessionState.CLOSED
        assert closed == [session]
        with pytest.raises(ConnectionFailed):
            await session.open()

    @pytest.mark.asyncio
    async def test_concurrent_open_uses_one_connection(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url))

            await asyncio.gather(session.open(), session.open(), session.open())
            await asyncio.sleep(0.05)

            assert server.connections == 1
            assert [m["type"] for m in server.messages] == ["session.update"]
            await session.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        closed = []
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), closed=closed)
            await session.open()

            await session.close()
            await session.close()

            assert session.state is SessionState.CLOSED
            assert closed == [session]
            await wait_until(lambda: all(ws.closed for ws in server.sockets))

    @pytest.mark.asyncio
    async def test_close_before_open(self):
        closed = []
        session = make_session(LocalOpenAIBackend("http://127.0.0.1:1/ws"), closed=closed)

        await session.close()

        assert session.state is SessionState.CLOSED
        assert closed == [session]

    @pytest.mark.asyncio
    async def test_remote_close_ends_session(self):
        closed = []
        async with FakeSpeechServer() as server:
            session = make_session(LocalOpenAIBackend(server.url), closed=closed)
            await session.open()

            await server.close_clients()
            await wait_until(lambda: session.state is SessionState.CLOSED)

            assert closed == [session]
            assert await session.send_audio_chunk(payload(1)) is False


async def ack_setup(ws, message):
    if "setup" in message:
        await asyncio.sleep(0.05)
        await ws.send_json({"setupComplete": {}})


async def reject_setup(ws, message):
    if "setup" in message:
        await ws.send_json({"error": {"code": 400, "message": "model not found"}})


@pytest.mark.integration
class TestGeminiSession:

    @pytest.mark.asyncio
    async def test_open_waits_for_setup_ack(self):
        async with FakeSpeechServer(on_message=ack_setup) as server:
            session = make_session(LocalGeminiBackend(server.url))

            await session.open()

            assert session.state is SessionState.OPEN
            assert "setup" in server.messages[0]
            assert await session.send_audio_chunk(payload(1)) is True
            await wait_until(lambda: len(server.audio_messages) == 1)
            chunk = server.audio_messages[0]["realtimeInput"]["mediaChunks"][0]
            assert chunk == {"mimeType": "audio/pcm;rate=16000", "data": "chunk1"}
            await session.close()

    @pytest.mark.asyncio
    async def test_no_audio_sent_while_waiting_for_ack(self):
        async with FakeSpeechServer() as server:
            session = make_session(LocalGeminiBackend(server.url), setup_timeout=5.0)
            opening = asyncio.ensure_future(session.open())
            await wait_until(lambda: len(server.messages) == 1)

            assert session.state is SessionState.CONNECTING
            assert await session.send_audio_chunk(payload(1)) is False

            await session.close()
            with pytest.raises(ConnectionFailed):
                await opening
            assert server.audio_messages == []

    @pytest.mark.asyncio
    async def test_setup_timeout(self):
        closed = []
        async with FakeSpeechServer() as server:
            session = make_session(LocalGeminiBackend(server.url), closed=closed, setup_timeout=0.1)

            with pytest.raises(ConnectionFailed):
                await session.open()

            assert session.state is SessionState.CLOSED
            assert closed == [session]

    @pytest.mark.asyncio
    async def test_setup_rejected(self):
        async with FakeSpeechServer(on_message=reject_setup) as server:
            session = make_session(LocalGeminiBackend(server.url))

            with pytest.raises(ConnectionFailed, match="model not found"):
                await session.open()

            assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_input_transcription_event(self, transcript_recorder):
        async with FakeSpeechServer(on_message=ack_setup) as server:
            session = make_session(LocalGeminiBackend(server.url), on_event=transcript_recorder)
            await session.open()

            await server.send({"serverContent": {"inputTranscription": {"text": "hello world"}}})
            await server.send({"serverContent": {"turnComplete": True}})
            await wait_until(lambda: len(transcript_recorder.events) == 1)

            event = transcript_recorder.events[0]
            assert event.to_dict()["type"] == "input"
            assert event.is_final is True
            await session.close()

    @pytest.mark.asyncio
    async def test_close_while_connecting_cancels_connect(self):
        closed = []
        async with FakeSpeechServer() as server:
            session = make_session(LocalGeminiBackend(server.url), closed=closed, setup_timeout=5.0)
            first = asyncio.ensure_future(session.open())
            second = asyncio.ensure_future(session.open())
            await wait_until(lambda: len(server.messages) == 1)

            await session.close()
            results = await asyncio.gather(first, second, return_exceptions=True)

            assert all(isinstance(r, ConnectionFailed) for r in results)
            assert session.state is SessionState.CLOSED
            assert session._http.closed
            assert session._connect_task.cancelled()
            assert closed == [session]
            assert server.connections == 1
            await wait_until(lambda: all(ws.closed for ws in server.sockets))
