"""Tests for dictation sessions and the session controller."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from whispertype.audio.recorder import CaptureError, DeviceError
from whispertype.audio.segmenter import SegmentationEngine
from whispertype.audio.transcriber import TranscriptionClient, TranscriptionError
from whispertype.session import (
    DictationSession,
    SessionController,
    SessionState,
    Transcript,
)
from whispertype.sinks import ClipboardSink

from conftest import FRAME_SAMPLES, FakeSource, stale_frames, wait_until

SPEECH, SILENT = 1000, 0


def mock_client(*texts):
    client = AsyncMock(spec=TranscriptionClient)
    client.transcribe.side_effect = list(texts)
    return client


class StopAfter(SegmentationEngine):
    """Engine that sets ``stop`` once it has processed ``limit`` frames."""

    def __init__(self, stop: asyncio.Event, limit: int):
        super().__init__()
        self.stop = stop
        self.limit = limit
        self.seen = 0

    def process(self, frame, now=None):
        phrase = super().process(frame, now)
        self.seen += 1
        if self.seen == self.limit:
            self.stop.set()
        return phrase


async def run_until(session: DictationSession, predicate) -> Transcript:
    """Run a session, stop it once ``predicate()`` holds, and return its result."""
    stop = asyncio.Event()
    task = asyncio.ensure_future(session.run(stop))
    await wait_until(lambda: predicate() or task.done())
    stop.set()
    return await task


class TestTranscript:

    def test_text_skips_empty_segments(self):
        transcript = Transcript()
        transcript.append("hello")
        transcript.append("")
        transcript.append("world")

        assert transcript.text == "hello world"
        assert len(transcript) == 3


@pytest.mark.asyncio
class TestDictationSession:
    """Test the producer/consumer pipeline of a single session."""

    async def test_phrases_stream_to_sink_in_order(self, sink):
        source = FakeSource(stale_frames(SPEECH, SPEECH, SILENT, SPEECH, SILENT))
        client = mock_client("hello", "world")
        session = DictationSession(source, client, sink)

        transcript = await run_until(session, lambda: len(sink.received) == 2)

        assert sink.received == ["hello", "world"]
        assert [segment.text for segment in transcript.segments] == ["hello", "world"]
        assert transcript.text == "hello world"

        phrase_lengths = [len(call.args[0]) for call in client.transcribe.call_args_list]
        assert phrase_lengths == [2 * FRAME_SAMPLES, FRAME_SAMPLES]

    async def test_final_flush_on_stop(self, sink):
        source = FakeSource(stale_frames(SPEECH, SPEECH))
        client = mock_client("unfinished thought")
        session = DictationSession(source, client, sink)

        transcript = await run_until(session, lambda: session.engine.buffered_samples == 2 * FRAME_SAMPLES)

        client.transcribe.assert_awaited_once()
        assert len(client.transcribe.call_args.args[0]) == 2 * FRAME_SAMPLES
        assert sink.received == ["unfinished thought"]
        assert transcript.text == "unfinished thought"

    async def test_silence_only_session_sends_nothing(self, sink):
        source = FakeSource(stale_frames(SILENT, SILENT, SILENT))
        client = mock_client()
        session = DictationSession(source, client, sink)

        transcript = await run_until(session, lambda: source.emitted == 3)

        client.transcribe.assert_not_awaited()
        assert sink.received == []
        assert len(transcript) == 0

    async def test_blank_phrase_still_flows_through_sink(self, sink):
        source = FakeSource(stale_frames(SPEECH, SILENT))
        session = DictationSession(source, mock_client(""), sink)

        transcript = await run_until(session, lambda: len(sink.received) == 1)

        assert sink.received == [""]
        assert len(transcript) == 1
        assert transcript.text == ""

    async def test_device_released_on_stop(self, sink):
        source = FakeSource(stale_frames(SPEECH))
        session = DictationSession(source, mock_client("x"), sink)

        await run_until(session, lambda: source.emitted == 1)

        assert source.released == 1
        assert not source.is_capturing()

    async def test_end_of_source_finishes_with_final_flush(self, sink):
        source = FakeSource(stale_frames(SPEECH, SPEECH), hold_open=False)
        client = mock_client("the end")
        session = DictationSession(source, client, sink)

        transcript = await asyncio.wait_for(session.run(asyncio.Event()), timeout=2)

        assert transcript.text == "the end"
        assert source.released == 1

    async def test_capture_error_ends_session_without_flush(self, sink):
        source = FakeSource(stale_frames(SPEECH, SPEECH), error=CaptureError("Audio read failed"))
        client = mock_client("never")
        session = DictationSession(source, client, sink)

        with pytest.raises(CaptureError):
            await asyncio.wait_for(session.run(asyncio.Event()), timeout=2)

        client.transcribe.assert_not_awaited()
        assert sink.received == []

    async def test_capture_error_discards_buffered_speech(self, sink):
        """Speech buffered before a capture failure is not kept on the engine."""
        source = FakeSource(stale_frames(SPEECH, SPEECH), error=CaptureError("Audio read failed"))
        client = mock_client()
        session = DictationSession(source, client, sink)

        with pytest.raises(CaptureError):
            await asyncio.wait_for(session.run(asyncio.Event()), timeout=2)

        assert source.emitted == 2
        assert not session.engine.has_phrase()
        assert session.engine.buffered_samples == 0
        assert session.engine.silence_started_at is None
        client.transcribe.assert_not_awaited()

    async def test_queued_frames_are_dropped_at_stop(self, sink):
        """Only speech consumed before the stop reaches the final flush."""
        source = FakeSource(stale_frames(SPEECH, SILENT, 2000, 3000, 4000, 5000))
        stop = asyncio.Event()
        phrases = []

        async def transcribe(phrase):
            phrases.append(phrase)
            if len(phrases) == 1:
                # Hold the first phrase until the queue is full and the producer is blocked
                await wait_until(lambda: source.emitted >= 4)
                return "first"
            return "final"

        client = AsyncMock(spec=TranscriptionClient)
        client.transcribe.side_effect = transcribe
        session = DictationSession(source, client, sink, engine=StopAfter(stop, 3), queue_capacity=2)

        transcript = await asyncio.wait_for(session.run(stop), timeout=2)

        assert len(phrases) == 2
        assert (phrases[0] == SPEECH).all()
        assert len(phrases[1]) == FRAME_SAMPLES
        assert (phrases[1] == 2000).all()
        assert transcript.text == "first final"
        assert sink.received == ["first", "final"]
        assert source.released == 1
        assert not session.engine.has_phrase()

    async def test_clipboard_sink_starts_empty_each_session(self):
        sink = ClipboardSink()
        client = mock_client("first session", "second session")

        with patch("pyperclip.copy") as mock_copy:
            for _ in range(2):
                source = FakeSource(stale_frames(SPEECH, SILENT), hold_open=False)
                await asyncio.wait_for(DictationSession(source, client, sink).run(asyncio.Event()), timeout=2)

        assert [call.args[0] for call in mock_copy.call_args_list] == ["first session", "second session"]
        assert sink.text == "second session"

    async def test_transcription_error_keeps_earlier_segments(self, sink):
        source = FakeSource(stale_frames(SPEECH, SILENT, SPEECH, SILENT))
        client = mock_client("first", TranscriptionError("Bad status: 500"))
        session = DictationSession(source, client, sink)

        with pytest.raises(TranscriptionError):
            await asyncio.wait_for(session.run(asyncio.Event()), timeout=2)

        assert session.transcript.text == "first"
        assert sink.received == ["first"]
        assert source.released == 1

    async def test_stop_before_any_audio(self, sink):
        source = FakeSource([])
        session = DictationSession(source, mock_client(), sink)

        stop = asyncio.Event()
        stop.set()
        transcript = await session.run(stop)

        assert len(transcript) == 0
        assert not source.is_capturing()

    async def test_full_queue_blocks_producer(self, sink):
        """The producer waits on a full queue instead of dropping frames."""
        source = FakeSource(stale_frames(*[SPEECH] * 10))
        session = DictationSession(source, mock_client(), sink, queue_capacity=3)
        queue = asyncio.Queue(maxsize=3)

        producer = asyncio.ensure_future(session._produce(queue))
        await wait_until(queue.full)
        for _ in range(5):
            await asyncio.sleep(0)

        assert queue.qsize() == 3
        assert source.emitted <= 4
        assert not producer.done()

        producer.cancel()
        await asyncio.gather(producer, return_exceptions=True)
        assert source.released == 1

    async def test_invalid_queue_capacity(self, sink):
        with pytest.raises(ValueError):
            DictationSession(FakeSource([]), mock_client(), sink, queue_capacity=0)


@pytest.mark.asyncio
class TestSessionController:
    """Test the two-state session lifecycle."""

    @staticmethod
    def make_controller(source, client, sink):
        sessions = []

        def factory():
            session = DictationSession(source, client, sink)
            sessions.append(session)
            return session

        return SessionController(factory), sessions

    async def test_start_is_idempotent(self, sink):
        controller, sessions = self.make_controller(FakeSource([]), mock_client(), sink)

        assert await controller.start() is True
        assert await controller.start() is False
        assert controller.state is SessionState.ACTIVE
        assert len(sessions) == 1

        await controller.stop()

    async def test_stop_when_inactive(self, sink):
        controller, _ = self.make_controller(FakeSource([]), mock_client(), sink)

        assert await controller.stop() is None
        assert controller.state is SessionState.INACTIVE

    async def test_stop_returns_transcript(self, sink):
        source = FakeSource(stale_frames(SPEECH, SILENT))
        controller, _ = self.make_controller(source, mock_client("hello"), sink)

        await controller.start()
        await wait_until(lambda: sink.received == ["hello"])
        transcript = await controller.stop()

        assert transcript.text == "hello"
        assert controller.transcript is transcript
        assert controller.state is SessionState.INACTIVE
        assert await controller.stop() is None

    async def test_toggle_starts_and_stops(self, sink):
        source = FakeSource([])
        controller, _ = self.make_controller(source, mock_client(), sink)

        assert await controller.toggle() is None
        assert controller.is_active
        await wait_until(source.is_capturing)

        transcript = await controller.toggle()

        assert isinstance(transcript, Transcript)
        assert not controller.is_active
        assert source.opened == 1
        assert source.released == 1
        assert not source.is_capturing()

    async def test_restart_opens_fresh_session(self, sink):
        source = FakeSource([])
        controller, sessions = self.make_controller(source, mock_client(), sink)

        for _ in range(2):
            await controller.start()
            await wait_until(lambda: source.is_capturing())
            await controller.stop()

        assert len(sessions) == 2
        assert sessions[0] is not sessions[1]
        assert source.opened == 2
        assert source.released == 2

    async def test_concurrent_toggles_are_serialized(self, sink):
        controller, sessions = self.make_controller(FakeSource([]), mock_client(), sink)

        results = await asyncio.gather(controller.toggle(), controller.toggle())

        assert results[0] is None
        assert isinstance(results[1], Transcript)
        assert controller.state is SessionState.INACTIVE
        assert len(sessions) == 1

    async def test_failed_session_stays_active_until_collected(self, sink):
        source = FakeSource([], error=DeviceError("Failed to start capture command"))
        controller, _ = self.make_controller(source, mock_client(), sink)

        await controller.start()
        await asyncio.wait_for(controller.wait(), timeout=2)

        assert controller.state is SessionState.ACTIVE

        with pytest.raises(DeviceError):
            await controller.stop()

        assert controller.state is SessionState.INACTIVE
