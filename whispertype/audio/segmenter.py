"""
Silence-triggered phrase segmentation.

Each frame is classified by its mean absolute amplitude. Speech frames are
accumulated into a phrase buffer; once silence has lasted longer than the
configured window the buffered phrase is handed back to be transcribed.
"""

import logging
import time
from typing import Callable, List, Optional

import numpy as np

from .recorder import AudioFrame

logger = logging.getLogger(__name__)


def frame_energy(samples: np.ndarray) -> float:
    """
    Mean absolute amplitude of a block of samples.

    Computed in 64-bit so that -32768 does not overflow. An empty block has
    zero energy.
    """
    if len(samples) == 0:
        return 0.0
    return float(np.mean(np.abs(np.asarray(samples, dtype=np.int64))))


def is_silent(samples: np.ndarray, threshold: float = 80) -> bool:
    """Whether a frame counts as silence (energy strictly below the threshold)."""
    return frame_energy(samples) < threshold


class SegmentationEngine:
    """
    Per-frame state machine that turns a frame stream into phrases.

    The engine owns the phrase buffer and the silence timer for a single
    session; only the segmentation loop should call into it.

    Args:
        energy_threshold: Frames with energy below this are silent
        silence_duration: Seconds of silence that complete a phrase
        clock: Time source used when ``process`` is not given ``now``

    Example:
        >>> engine = SegmentationEngine()
        >>> for frame in frames:
        ...     phrase = engine.process(frame)
        ...     if phrase is not None:
        ...         send(phrase)
        >>> leftover = engine.drain()
    """

    def __init__(
        self,
        energy_threshold: float = 80,
        silence_duration: float = 0.3,
        clock: Callable[[], float] = time.monotonic
    ):
        self.energy_threshold = energy_threshold
        self.silence_duration = silence_duration
        self.clock = clock

        self._phrase: List[np.ndarray] = []
        self._silence_started_at: Optional[float] = None

    @property
    def silence_started_at(self) -> Optional[float]:
        """Start of the current silence run, or None if no silence is pending."""
        return self._silence_started_at

    @property
    def buffered_samples(self) -> int:
        """Number of samples in the phrase buffer."""
        return sum(len(chunk) for chunk in self._phrase)

    def has_phrase(self) -> bool:
        """Check if any speech is waiting to be flushed."""
        return bool(self._phrase)

    def reset(self) -> None:
        """Clear the phrase buffer and silence timer for a new session."""
        self._phrase = []
        self._silence_started_at = None

    def process(self, frame: AudioFrame, now: Optional[float] = None) -> Optional[np.ndarray]:
        """
        Feed one frame through the state machine.

        Args:
            frame: Next captured frame
            now: Current time on the frame clock (defaults to ``clock()``)

        Returns:
            The completed phrase if this frame closed one, otherwise None.
        """
        energy = frame_energy(frame.samples)
        logger.debug(f"Computed average energy: {energy:.1f}")

        if energy >= self.energy_threshold:
            if self._silence_started_at is not None:
                logger.debug(
                    f"Speech detected after {frame.captured_at - self._silence_started_at:.2f}s of silence"
                )
            self._silence_started_at = None
            self._phrase.append(frame.samples)
            return None

        if self._silence_started_at is None:
            self._silence_started_at = frame.captured_at
            logger.debug(f"Silence started at {self._silence_started_at:.3f}")

        if not self._phrase:
            return None

        now = self.clock() if now is None else now
        if now - self._silence_started_at > self.silence_duration:
            return self._take_phrase()

        return None

    def drain(self) -> Optional[np.ndarray]:
        """
        Final flush for a session that is ending.

        Returns:
            Any buffered speech regardless of silence state, or None if the
            buffer is empty. Engine state is cleared either way.
        """
        if not self._phrase:
            self._silence_started_at = None
            return None
        return self._take_phrase()

    def _take_phrase(self) -> np.ndarray:
        phrase = np.concatenate(self._phrase)
        self.reset()
        return phrase
