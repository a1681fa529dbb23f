"""Capture, segmentation and transcription of speech audio."""

from .chunking import ChunkingStrategy
from .recorder import (
    AudioFrame,
    AudioSource,
    CaptureError,
    CommandSource,
    DeviceError,
    MicrophonePermissionError,
    PyAudioSource,
    create_source,
    get_available_devices,
)
from .segmenter import SegmentationEngine, frame_energy, is_silent
from .transcriber import (
    TranscriptionClient,
    TranscriptionDecodeError,
    TranscriptionError,
    TranscriptionTimeoutError,
)
from .wav import decode_wav, encode_wav

__all__ = [
    "AudioFrame",
    "AudioSource",
    "CaptureError",
    "ChunkingStrategy",
    "CommandSource",
    "DeviceError",
    "MicrophonePermissionError",
    "PyAudioSource",
    "SegmentationEngine",
    "TranscriptionClient",
    "TranscriptionDecodeError",
    "TranscriptionError",
    "TranscriptionTimeoutError",
    "create_source",
    "decode_wav",
    "encode_wav",
    "frame_energy",
    "get_available_devices",
    "is_silent",
]
