"""WAV encoding for phrases sent to the whisper server."""

import io
import wave
from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class WavInfo:
    """Format fields read back from a WAV header."""
    channels: int
    sample_width: int
    sample_rate: int
    frame_count: int

    @property
    def bits_per_sample(self) -> int:
        return self.sample_width * 8

    @property
    def data_size(self) -> int:
        return self.frame_count * self.channels * self.sample_width


def encode_wav(samples: np.ndarray, sample_rate: int = 16000) -> bytes:
    """
    Encode mono 16-bit samples as a canonical WAV file.

    The result is a 44-byte RIFF/WAVE header (PCM format 1, one channel,
    16 bits per sample) followed by the little-endian sample data.

    Args:
        samples: Mono int16 samples
        sample_rate: Sample rate written to the header

    Returns:
        Complete WAV file as bytes
    """
    pcm = np.asarray(samples, dtype=np.int16).astype("<i2", copy=False)

    wav_buffer = io.BytesIO()
    with wave.open(wav_buffer, 'wb') as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)  # 16-bit = 2 bytes per sample
        wav_file.setframerate(sample_rate)
        wav_file.writeframes(pcm.tobytes())

    return wav_buffer.getvalue()


def decode_wav(data: bytes) -> Tuple[WavInfo, np.ndarray]:
    """
    Decode a 16-bit PCM WAV file.

    Multi-channel files keep the first channel only.

    Raises:
        ValueError: If the file is not 16-bit PCM
    """
    with wave.open(io.BytesIO(data), 'rb') as wav_file:
        info = WavInfo(
            channels=wav_file.getnchannels(),
            sample_width=wav_file.getsampwidth(),
            sample_rate=wav_file.getframerate(),
            frame_count=wav_file.getnframes(),
        )
        frames = wav_file.readframes(info.frame_count)

    if info.sample_width != 2:
        raise ValueError(f"Only 16-bit PCM WAV is supported, got {info.bits_per_sample}-bit")

    samples = np.frombuffer(frames, dtype="<i2").astype(np.int16)
    if info.channels > 1:
        samples = samples.reshape(-1, info.channels)[:, 0].copy()

    return info, samples
