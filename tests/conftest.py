"""Shared helpers for WhisperType tests."""

import asyncio
import time
from typing import List, Optional

import numpy as np
import pytest

from whispertype.audio.recorder import AudioFrame, AudioSource
from whispertype.sinks import TextSink

FRAME_SAMPLES = 1600  # 100ms at 16kHz


def make_frame(level: int, captured_at: float = 0.0, samples: int = FRAME_SAMPLES) -> AudioFrame:
    """Frame whose energy equals ``abs(level)``."""
    data = np.full(samples, level, dtype=np.int16)
    data.flags.writeable = False
    return AudioFrame(captured_at=captured_at, samples=data)


def speech(captured_at: float = 0.0) -> AudioFrame:
    return make_frame(1000, captured_at)


def silence(captured_at: float = 0.0) -> AudioFrame:
    return make_frame(0, captured_at)


def stale_frames(*levels: int) -> List[AudioFrame]:
    """
    Frames stamped ten seconds in the past, 100ms apart.

    Any silent frame after speech is therefore already past the silence
    window when the consumer sees it.
    """
    base = time.monotonic() - 10
    return [make_frame(level, base + i * 0.1) for i, level in enumerate(levels)]


class FakeSource(AudioSource):
    """
    Source that replays canned frames.

    After the frames it either raises ``error``, ends (``hold_open=False``),
    or stays open until the capture is closed.
    """

    def __init__(self, frames: List[AudioFrame], hold_open: bool = True, error: Optional[Exception] = None):
        super().__init__(sample_rate=16000, frame_duration=0.1)
        self._frames = list(frames)
        self.hold_open = hold_open
        self.error = error
        self.opened = 0
        self.released = 0
        self.emitted = 0

    async def _capture(self):
        self.opened += 1
        try:
            for frame in self._frames:
                yield frame
                self.emitted += 1
                await asyncio.sleep(0)
            if self.error is not None:
                raise self.error
            if self.hold_open:
                await asyncio.Event().wait()
        finally:
            self.released += 1


class RecordingSink(TextSink):
    """Sink that remembers every call, including empty ones."""

    def __init__(self):
        self.received: List[str] = []

    def inject(self, text: str) -> None:
        self.received.append(text)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the event loop until ``predicate()`` is true."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("Condition not reached in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
