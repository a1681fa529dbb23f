"""
Audio capture for the dictation pipeline.

Sources turn a continuous 16-bit PCM stream into fixed-duration frames
stamped with the time they were received. Two backends are provided: the
default microphone through PyAudio, and any capture command writing raw
s16le PCM to stdout (PulseAudio's ``parec`` by default).
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Sequence

import numpy as np

try:
    import pyaudio
    PYAUDIO_AVAILABLE = True
except ImportError:
    PYAUDIO_AVAILABLE = False
    pyaudio = None

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CaptureError(Exception):
    """Base exception for audio capture errors."""
    pass


class MicrophonePermissionError(CaptureError):
    """Raised when microphone permissions are not granted."""
    pass


class DeviceError(CaptureError):
    """Raised when the capture device or process cannot be started."""
    pass


@dataclass(frozen=True)
class AudioFrame:
    """A fixed-duration block of mono 16-bit samples and its receipt time."""
    captured_at: float   # time.monotonic() when the frame was read
    samples: np.ndarray  # read-only int16 samples

    def __len__(self) -> int:
        return len(self.samples)


def decode_frame(data: bytes, channels: int = 1) -> np.ndarray:
    """
    Decode interleaved little-endian 16-bit PCM into a read-only mono array.

    Multi-channel input keeps the first channel only.

    Args:
        data: Raw PCM bytes (length must be a multiple of 2 * channels)
        channels: Number of interleaved channels in ``data``

    Returns:
        int16 numpy array that cannot be modified in place
    """
    samples = np.frombuffer(data, dtype="<i2")
    if channels > 1:
        samples = samples.reshape(-1, channels)[:, 0]
    samples = samples.astype(np.int16)
    samples.flags.writeable = False
    return samples


async def read_frames(
    reader: asyncio.StreamReader,
    frame_bytes: int,
    channels: int = 1,
    clock: Clock = time.monotonic
) -> AsyncIterator[AudioFrame]:
    """
    Read fixed-size frames from a byte stream until it ends.

    A trailing read shorter than ``frame_bytes`` is discarded rather than
    emitted as a partial frame.

    Raises:
        CaptureError: If reading from the stream fails
    """
    while True:
        try:
            data = await reader.readexactly(frame_bytes)
        except asyncio.IncompleteReadError as e:
            if e.partial:
                logger.debug(f"Discarding {len(e.partial)} trailing bytes (short read)")
            return
        except OSError as e:
            raise CaptureError(f"Audio read failed: {e}") from e

        yield AudioFrame(captured_at=clock(), samples=decode_frame(data, channels))


class AudioSource(ABC):
    """
    Base class for frame producers.

    ``frames()`` opens a fresh capture each time it is iterated, so the same
    source can serve one session after another. Only one iteration may be
    active at a time. The underlying device or process is released when the
    iteration ends, whether it ran out, failed, or was cancelled.

    Args:
        sample_rate: Sample rate in Hz (16kHz is what the whisper server expects)
        channels: Number of captured channels (frames are reduced to mono)
        frame_duration: Seconds of audio per frame
        clock: Time source used to stamp frames on receipt
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        frame_duration: float = 1.0,
        clock: Clock = time.monotonic
    ):
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_duration = frame_duration
        self.clock = clock
        self._capturing = False

        self._validate_config()

    def _validate_config(self) -> None:
        """Validate audio configuration parameters."""
        if self.sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {self.sample_rate}")
        if self.channels not in (1, 2):
            raise ValueError(f"Channels must be 1 or 2, got {self.channels}")
        if self.frame_samples <= 0:
            raise ValueError(f"Frame duration too short, got {self.frame_duration}s")

    @property
    def frame_samples(self) -> int:
        """Samples per channel in one frame."""
        return int(round(self.sample_rate * self.frame_duration))

    @property
    def frame_bytes(self) -> int:
        """Bytes in one frame: sample_rate x channels x 2 bytes x duration."""
        return self.frame_samples * self.channels * 2

    def is_capturing(self) -> bool:
        """Check if a capture is currently running."""
        return self._capturing

    async def frames(self) -> AsyncIterator[AudioFrame]:
        """
        Capture frames until the stream ends or the iteration is closed.

        Raises:
            RuntimeError: If a capture is already running on this source
            CaptureError: If the device cannot be opened or a read fails
        """
        if self._capturing:
            raise RuntimeError("Capture already in progress")

        self._capturing = True
        capture = self._capture()
        try:
            async for frame in capture:
                yield frame
        finally:
            # The device must be released before another session opens it.
            await capture.aclose()
            self._capturing = False

    @abstractmethod
    def _capture(self) -> AsyncIterator[AudioFrame]:
        """Open the device and yield frames; must release it on exit."""
        pass

    def _make_frame(self, data: bytes) -> AudioFrame:
        return AudioFrame(captured_at=self.clock(), samples=decode_frame(data, self.channels))


class CommandSource(AudioSource):
    """
    Capture from a command that writes raw s16le PCM to stdout.

    Defaults to PulseAudio's ``parec`` at the configured rate and channel
    count. The process is terminated when the capture scope ends.

    Example:
        >>> source = CommandSource(frame_duration=1.0)
        >>> async for frame in source.frames():
        ...     print(frame.captured_at, len(frame))
    """

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        terminate_timeout: float = 2.0,
        **kwargs
    ):
        super().__init__(**kwargs)
        self.command = list(command) if command else self.default_command()
        self.terminate_timeout = terminate_timeout

    def default_command(self) -> List[str]:
        """The ``parec`` invocation matching this source's format."""
        return [
            "parec",
            "--format=s16le",
            f"--rate={self.sample_rate}",
            f"--channels={self.channels}",
        ]

    async def _capture(self) -> AsyncIterator[AudioFrame]:
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise DeviceError(f"Failed to start capture command {self.command[0]!r}: {e}") from e

        logger.info(f"Capture started: {' '.join(self.command)} (pid {process.pid})")

        try:
            async for frame in read_frames(process.stdout, self.frame_bytes, self.channels, self.clock):
                yield frame

            returncode = await process.wait()
            if returncode != 0:
                raise CaptureError(f"Capture command exited with status {returncode}")
        finally:
            await self._terminate(process)
            logger.debug("Capture process ended")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop the capture process, killing it if it ignores SIGTERM."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), self.terminate_timeout)
        except ProcessLookupError:
            pass
        except asyncio.TimeoutError:
            logger.warning(f"Capture process {process.pid} did not exit, killing it")
            process.kill()
            await process.wait()


class PyAudioSource(AudioSource):
    """
    Capture from a microphone using PyAudio.

    Blocking reads run on a dedicated worker thread. Closing the stream is
    queued on the same thread, so it never races an in-flight read.

    Assumptions:
    - Default input device unless ``device_index`` is given
    - No auto-permission prompting (user handles permissions)

    Args:
        device_index: PyAudio input device index (None for the default device)
    """

    def __init__(self, device_index: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        self.device_index = device_index
        self.format = pyaudio.paInt16 if PYAUDIO_AVAILABLE else None

    async def _capture(self) -> AsyncIterator[AudioFrame]:
        if not PYAUDIO_AVAILABLE:
            raise DeviceError("PyAudio not available. Install with: pip install pyaudio")

        loop = asyncio.get_event_loop()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="whispertype-capture")
        audio = stream = None

        try:
            audio, stream = await loop.run_in_executor(executor, self._open)
            logger.info(f"Recording started: {self.sample_rate}Hz, {self.channels} channel(s)")

            while True:
                try:
                    data = await loop.run_in_executor(executor, self._read, stream)
                except OSError as e:
                    raise CaptureError(f"Audio read failed: {e}") from e

                if len(data) < self.frame_bytes:
                    logger.debug(f"Discarding {len(data)} trailing bytes (short read)")
                    return

                yield self._make_frame(data)
        finally:
            if audio is not None:
                await loop.run_in_executor(executor, self._close, audio, stream)
            executor.shutdown(wait=False)
            logger.debug("Recording stopped")

    def _open(self):
        """Initialize PyAudio and open the input stream (runs on the worker thread)."""
        audio = pyaudio.PyAudio()
        try:
            if not self._has_input_devices(audio):
                raise DeviceError("No audio input devices found")

            try:
                stream = audio.open(
                    format=self.format,
                    channels=self.channels,
                    rate=self.sample_rate,
                    input=True,
                    frames_per_buffer=self.frame_samples,
                    input_device_index=self.device_index
                )
            except OSError as e:
                if "device" in str(e).lower() or "input" in str(e).lower():
                    raise MicrophonePermissionError(self._format_permission_error()) from e
                raise DeviceError(f"Failed to open audio stream: {e}") from e
        except Exception:
            audio.terminate()
            raise

        return audio, stream

    def _read(self, stream) -> bytes:
        return stream.read(self.frame_samples, exception_on_overflow=False)

    def _close(self, audio, stream) -> None:
        """Clean up PyAudio resources safely."""
        try:
            if stream is not None:
                if stream.is_active():
                    stream.stop_stream()
                stream.close()
        except OSError as e:
            logger.warning(f"Error closing audio stream: {e}")
        finally:
            audio.terminate()

    @staticmethod
    def _has_input_devices(audio) -> bool:
        """Check if any audio input devices are available."""
        try:
            for i in range(audio.get_device_count()):
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) > 0:
                    return True
        except OSError as e:
            logger.warning(f"Error checking input devices: {e}")

        return False

    @staticmethod
    def _format_permission_error() -> str:
        """Format a helpful permission error message."""
        return (
            "Microphone access denied or input device unavailable.\n"
            "1. Check that a microphone is connected and not used exclusively by another app\n"
            "2. On macOS, enable microphone access for your terminal under\n"
            "   System Settings → Privacy & Security → Microphone\n"
            "3. Restart the application and try again"
        )


def create_source(kind: str, **kwargs) -> AudioSource:
    """
    Create an audio source by name.

    Args:
        kind: 'pyaudio' or 'parec'
        **kwargs: Passed to the source constructor

    Raises:
        ValueError: If the source kind is unknown
    """
    if kind == "pyaudio":
        return PyAudioSource(**kwargs)
    if kind == "parec":
        kwargs.pop("device_index", None)
        return CommandSource(**kwargs)
    raise ValueError(f"Unknown audio source: {kind!r}")


async def get_available_devices() -> list[dict]:
    """
    Get a list of available audio input devices.

    Returns:
        List of dictionaries with device information (name, index, channels, etc.)

    Raises:
        DeviceError: If PyAudio is missing or devices cannot be enumerated

    Example:
        >>> devices = await get_available_devices()
        >>> for device in devices:
        ...     print(f"{device['name']}: {device['channels']} channels")
    """
    if not PYAUDIO_AVAILABLE:
        raise DeviceError("PyAudio not available. Install with: pip install pyaudio")

    devices = []
    audio = None

    try:
        audio = pyaudio.PyAudio()
        try:
            default_index = audio.get_default_input_device_info().get('index', -1)
        except OSError:
            default_index = -1

        for i in range(audio.get_device_count()):
            try:
                device_info = audio.get_device_info_by_index(i)
                if device_info.get('maxInputChannels', 0) > 0:  # Only input devices
                    devices.append({
                        'index': i,
                        'name': device_info.get('name', 'Unknown'),
                        'channels': device_info.get('maxInputChannels', 0),
                        'sample_rate': int(device_info.get('defaultSampleRate', 0)),
                        'is_default': i == default_index
                    })
            except OSError as e:
                logger.warning(f"Error getting device {i} info: {e}")
                continue

    except OSError as e:
        logger.error(f"Error enumerating audio devices: {e}")
        raise DeviceError(f"Failed to enumerate audio devices: {e}") from e
    finally:
        if audio:
            audio.terminate()

    return devices
