"""
Dictation sessions: capture, segmentation and transcription wired together.

A session runs two tasks. The producer pulls frames from the audio source
into a bounded queue; the consumer feeds them through the segmentation
engine and transcribes each completed phrase, handing the text to the sink
as soon as it arrives. ``SessionController`` owns the start/stop lifecycle
so that at most one session is ever active.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from .audio.recorder import AudioFrame, AudioSource
from .audio.segmenter import SegmentationEngine
from .audio.transcriber import TranscriptionClient
from .sinks import TextSink

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle state of a SessionController."""
    INACTIVE = "inactive"
    ACTIVE = "active"


@dataclass
class TranscriptSegment:
    """Text returned for one flushed phrase (may be empty)."""
    text: str


@dataclass
class Transcript:
    """Ordered segments produced by a session."""
    segments: List[TranscriptSegment] = field(default_factory=list)

    def append(self, text: str) -> TranscriptSegment:
        segment = TranscriptSegment(text=text)
        self.segments.append(segment)
        return segment

    @property
    def text(self) -> str:
        """Non-empty segments joined with single spaces."""
        return " ".join(segment.text for segment in self.segments if segment.text)

    def __len__(self) -> int:
        return len(self.segments)


class DictationSession:
    """
    One run of the dictation pipeline.

    Args:
        source: Audio source to capture from
        client: Transcription client for completed phrases
        sink: Receives each phrase's text in flush order
        engine: Segmentation engine (a default one is created if omitted)
        queue_capacity: Frames buffered between producer and consumer

    Example:
        >>> session = DictationSession(source, client, ConsoleSink())
        >>> stop = asyncio.Event()
        >>> transcript = await session.run(stop)   # returns after stop.set()
    """

    def __init__(
        self,
        source: AudioSource,
        client: TranscriptionClient,
        sink: Optional[TextSink] = None,
        engine: Optional[SegmentationEngine] = None,
        queue_capacity: int = 10
    ):
        if queue_capacity <= 0:
            raise ValueError(f"Queue capacity must be positive, got {queue_capacity}")

        self.source = source
        self.client = client
        self.sink = sink
        self.engine = engine or SegmentationEngine()
        self.queue_capacity = queue_capacity
        self.transcript = Transcript()

    async def run(self, stop_event: asyncio.Event) -> Transcript:
        """
        Run until ``stop_event`` is set or the audio source ends.

        On stop the capture is shut down first, then whatever speech is still
        buffered is transcribed in one final flush. Frames that were queued
        but not yet consumed at that point are dropped.

        Returns:
            The session transcript.

        Raises:
            CaptureError: If capture fails (no final flush is attempted)
            TranscriptionError: If a phrase cannot be transcribed; segments
                flushed before the failure stay in ``self.transcript``
        """
        self.engine.reset()
        self.transcript = Transcript()
        if self.sink is not None:
            self.sink.reset()

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_capacity)
        producer = asyncio.ensure_future(self._produce(queue))

        try:
            try:
                await self._consume(queue, stop_event, producer)
            finally:
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)

            if not producer.cancelled() and producer.exception() is not None:
                raise producer.exception()

            dropped = queue.qsize()
            if dropped:
                logger.debug(f"Dropping {dropped} queued frame(s) at stop")

            phrase = self.engine.drain()
            if phrase is not None:
                logger.debug(f"Final flush: {len(phrase)} samples")
                await self._flush(phrase)
        finally:
            # Buffered speech never outlives the session.
            self.engine.reset()

        logger.info(f"Session finished with {len(self.transcript)} segment(s)")
        return self.transcript

    async def _produce(self, queue: asyncio.Queue) -> None:
        """Move frames from the source into the queue, waiting while it is full."""
        frames = self.source.frames()
        try:
            async for frame in frames:
                await queue.put(frame)
        finally:
            await frames.aclose()
        logger.debug("Audio source ended")

    async def _consume(
        self,
        queue: asyncio.Queue,
        stop_event: asyncio.Event,
        producer: asyncio.Future
    ) -> None:
        while not stop_event.is_set():
            frame = await self._next_frame(queue, stop_event, producer)
            if frame is None:
                if producer.done() and queue.empty():
                    return
                continue

            phrase = self.engine.process(frame)
            if phrase is not None:
                await self._flush(phrase)

    @staticmethod
    async def _next_frame(
        queue: asyncio.Queue,
        stop_event: asyncio.Event,
        producer: asyncio.Future
    ) -> Optional[AudioFrame]:
        """
        Wait for the next queued frame.

        Returns None when the wait was ended by the stop event or by the
        producer finishing instead of by a frame.
        """
        if not queue.empty():
            return queue.get_nowait()
        if producer.done():
            return None

        getter = asyncio.ensure_future(queue.get())
        stopper = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({getter, stopper, producer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (getter, stopper):
                if not waiter.done():
                    waiter.cancel()

        if getter.done() and not getter.cancelled():
            return getter.result()
        return None

    async def _flush(self, phrase: np.ndarray) -> None:
        started = time.monotonic()
        text = await self.client.transcribe(phrase)
        logger.debug(f"Phrase of {len(phrase)} samples transcribed in {time.monotonic() - started:.2f}s")

        self.transcript.append(text)
        if self.sink is not None:
            self.sink.inject(text)


class SessionController:
    """
    Two-state owner of the active dictation session.

    Start and stop are serialized by a lock, so rapid toggling can neither
    run two sessions at once nor lose a stop. A session that ends on its own
    (capture error, transcription error, end of source) stays ACTIVE until
    ``stop()`` collects its result.

    Args:
        session_factory: Builds a fresh DictationSession for each start
    """

    def __init__(self, session_factory: Callable[[], DictationSession]):
        self._session_factory = session_factory
        self._lock = asyncio.Lock()
        self._session: Optional[DictationSession] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self.state = SessionState.INACTIVE

    @property
    def is_active(self) -> bool:
        return self.state is SessionState.ACTIVE

    @property
    def transcript(self) -> Optional[Transcript]:
        """Transcript of the current or most recent session."""
        return self._session.transcript if self._session else None

    async def wait(self) -> None:
        """Wait until the active session ends, without collecting its result."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})

    async def start(self) -> bool:
        """
        Start a new session.

        Returns:
            True if a session was started, False if one was already active.
        """
        async with self._lock:
            if self.is_active:
                logger.debug("Session already active, ignoring start")
                return False
            self._start()
            return True

    async def stop(self) -> Optional[Transcript]:
        """
        Stop the active session and wait for its final flush.

        Returns:
            The session transcript, or None if no session was active.

        Raises:
            CaptureError: If the session failed during capture
            TranscriptionError: If the session failed during transcription
        """
        async with self._lock:
            if not self.is_active:
                logger.debug("No active session, ignoring stop")
                return None
            return await self._stop()

    async def toggle(self) -> Optional[Transcript]:
        """
        Start a session if none is active, otherwise stop it.

        Returns:
            The stopped session's transcript, or None when a session was started.
        """
        async with self._lock:
            if self.is_active:
                return await self._stop()
            self._start()
            return None

    def _start(self) -> None:
        self._session = self._session_factory()
        self._stop_event = asyncio.Event()
        self._task = asyncio.ensure_future(self._session.run(self._stop_event))
        self._task.add_done_callback(self._log_session_end)
        self.state = SessionState.ACTIVE
        logger.info("Session started")

    async def _stop(self) -> Transcript:
        self._stop_event.set()
        task = self._task
        try:
            transcript = await task
        finally:
            self.state = SessionState.INACTIVE
            self._task = None
            self._stop_event = None

        logger.info("Session stopped")
        return transcript

    @staticmethod
    def _log_session_end(task: asyncio.Task) -> None:
        if task.cancelled():
            logger.warning("Session was cancelled")
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Session ended with error: {error}")
