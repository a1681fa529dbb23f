"""
Runtime configuration for WhisperType.

Defaults mirror the values the dictation pipeline was tuned with: 16kHz mono
capture in one-second frames, an energy threshold of 80 and a 300ms silence
window before a phrase is sent to the whisper server.
"""

import os
from dataclasses import dataclass
from typing import Optional


class ConfigurationError(ValueError):
    """Raised when a configuration value cannot be used by the pipeline."""
    pass


@dataclass(frozen=True)
class DictationConfig:
    """
    Settings shared by capture, segmentation and transcription.

    Args:
        host: Whisper server host
        port: Whisper server port
        endpoint: Inference path on the whisper server
        sample_rate: Capture and WAV sample rate in Hz
        channels: Capture channel count (frames are reduced to mono)
        frame_duration: Seconds of audio per captured frame
        energy_threshold: Mean absolute amplitude below which a frame is silent
        silence_duration: Seconds of silence that complete a phrase
        queue_capacity: Frames buffered between capture and segmentation
        request_timeout: Per-request timeout for the whisper server in seconds
        chunk_duration: Window length used when transcribing long buffers
        chunk_overlap: Overlap between consecutive windows in seconds
    """
    host: str = "localhost"
    port: int = 36124
    endpoint: str = "/inference"
    sample_rate: int = 16000
    channels: int = 1
    frame_duration: float = 1.0
    energy_threshold: int = 80
    silence_duration: float = 0.3
    queue_capacity: int = 10
    request_timeout: float = 30.0
    chunk_duration: float = 1.0
    chunk_overlap: float = 0.5

    @classmethod
    def from_env(cls, **overrides) -> "DictationConfig":
        """
        Build a config from WHISPERTYPE_* environment variables.

        Keyword overrides whose value is None are ignored, so CLI options that
        were not given fall back to the environment and then to defaults.

        Raises:
            ConfigurationError: If an environment value is not a valid number
        """
        values = {}

        host = os.getenv("WHISPERTYPE_HOST")
        if host:
            values["host"] = host

        port = os.getenv("WHISPERTYPE_PORT")
        if port:
            try:
                values["port"] = int(port)
            except ValueError as e:
                raise ConfigurationError(f"WHISPERTYPE_PORT must be an integer, got {port!r}") from e

        values.update({key: value for key, value in overrides.items() if value is not None})
        config = cls(**values)
        config.validate()
        return config

    @property
    def base_url(self) -> str:
        """Base URL of the whisper server."""
        return f"http://{self.host}:{self.port}"

    @property
    def frame_bytes(self) -> int:
        """Size of one captured frame in bytes (16-bit samples)."""
        return int(round(self.sample_rate * self.frame_duration)) * self.channels * 2

    def validate(self) -> None:
        """
        Check that every value is usable.

        Raises:
            ConfigurationError: On the first invalid value found
        """
        if not self.host:
            raise ConfigurationError("Host must not be empty")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Port must be between 1 and 65535, got {self.port}")
        if self.sample_rate <= 0:
            raise ConfigurationError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.channels not in (1, 2):
            raise ConfigurationError(f"Channels must be 1 or 2, got {self.channels}")
        if self.frame_duration <= 0 or self.frame_bytes == 0:
            raise ConfigurationError(f"Frame duration must be positive, got {self.frame_duration}")
        if self.energy_threshold < 0:
            raise ConfigurationError(f"Energy threshold must not be negative, got {self.energy_threshold}")
        if self.silence_duration < 0:
            raise ConfigurationError(f"Silence duration must not be negative, got {self.silence_duration}")
        if self.queue_capacity <= 0:
            raise ConfigurationError(f"Queue capacity must be positive, got {self.queue_capacity}")
        if self.request_timeout <= 0:
            raise ConfigurationError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.chunk_duration <= 0:
            raise ConfigurationError(f"Chunk duration must be positive, got {self.chunk_duration}")
        if not 0 <= self.chunk_overlap < self.chunk_duration:
            raise ConfigurationError(
                f"Chunk overlap must be in [0, {self.chunk_duration}), got {self.chunk_overlap}"
            )


def describe(config: Optional[DictationConfig] = None) -> dict:
    """Summarize a config for display."""
    config = config or DictationConfig()
    return {
        "server": f"{config.base_url}{config.endpoint}",
        "audio": f"{config.sample_rate}Hz, {config.channels} channel(s), {config.frame_duration:g}s frames",
        "silence": f"energy < {config.energy_threshold} for > {int(config.silence_duration * 1000)}ms",
        "timeout": f"{config.request_timeout:g}s per request",
    }
