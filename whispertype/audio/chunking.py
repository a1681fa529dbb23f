"""
Overlapping-window transcription for long buffers.

A buffer longer than one window is cut into windows of at most
``samples_per_chunk`` samples that start ``samples_per_chunk - overlap``
apart. Each window is transcribed in order and the results are joined with
a single space. Words inside an overlap can appear twice in the output.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .transcriber import TranscriptionClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkingStrategy:
    """
    Fixed-size window layout with overlap.

    Args:
        samples_per_chunk: Maximum samples per window
        overlap_samples: Samples shared by consecutive windows
    """
    samples_per_chunk: int
    overlap_samples: int

    def __post_init__(self):
        if self.samples_per_chunk <= 0:
            raise ValueError(f"Chunk size must be positive, got {self.samples_per_chunk}")
        if not 0 <= self.overlap_samples < self.samples_per_chunk:
            raise ValueError(
                f"Overlap must be in [0, {self.samples_per_chunk}), got {self.overlap_samples}"
            )

    @classmethod
    def from_durations(
        cls,
        sample_rate: int,
        chunk_duration: float = 1.0,
        overlap: float = 0.5
    ) -> "ChunkingStrategy":
        """Build a strategy from window and overlap lengths in seconds."""
        return cls(
            samples_per_chunk=int(round(sample_rate * chunk_duration)),
            overlap_samples=int(round(sample_rate * overlap)),
        )

    @property
    def stride(self) -> int:
        """Distance between the starts of consecutive windows."""
        return self.samples_per_chunk - self.overlap_samples

    def window_count(self, length: int) -> int:
        """Number of windows needed to cover ``length`` samples (at least one)."""
        if length <= self.samples_per_chunk:
            return 1
        return max(1, math.ceil((length - self.overlap_samples) / self.stride))

    def windows(self, length: int) -> List[Tuple[int, int]]:
        """
        Window boundaries for a buffer.

        Args:
            length: Number of samples in the buffer

        Returns:
            ``(start, end)`` sample offsets, in order, with the last window
            clipped to ``length``
        """
        bounds = []
        for k in range(self.window_count(length)):
            start = k * self.stride
            bounds.append((start, min(start + self.samples_per_chunk, length)))
        return bounds

    async def transcribe(self, client: TranscriptionClient, samples: np.ndarray) -> str:
        """
        Transcribe a buffer window by window.

        Raises:
            TranscriptionError: From the first window that fails
        """
        bounds = self.windows(len(samples))
        logger.info(f"Transcribing {len(samples)} samples in {len(bounds)} window(s)")

        texts = []
        for index, (start, end) in enumerate(bounds, 1):
            text = await client.transcribe(samples[start:end])
            logger.debug(f"Window {index}/{len(bounds)} [{start}:{end}]: {text!r}")
            texts.append(text)

        return " ".join(texts)
