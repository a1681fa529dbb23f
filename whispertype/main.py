"""
Main application entry point for WhisperType.

This module provides the command-line interface and wires the audio source,
segmentation engine, whisper client and text sink into dictation sessions.
"""

import asyncio
import logging
import sys
import wave
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from . import __version__
from .audio.chunking import ChunkingStrategy
from .audio.recorder import CaptureError, DeviceError, create_source, get_available_devices
from .audio.segmenter import SegmentationEngine
from .audio.transcriber import TranscriptionClient, TranscriptionError
from .audio.wav import decode_wav
from .config import ConfigurationError, DictationConfig, describe
from .session import DictationSession, SessionController
from .sinks import ConsoleSink, create_sink
from .ui.terminal import TerminalUI

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Send log records to stderr through rich; DEBUG when verbose, else WARNING."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                show_time=False,
                show_path=False,
                rich_tracebacks=False,
            )
        ],
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class DictationApp:
    """
    Main application class that coordinates all components.

    Owns one audio source, one whisper client and one text sink for its
    whole lifetime; each dictation session is a fresh DictationSession built
    on top of them.

    Args:
        config: Validated runtime configuration
        source_kind: 'pyaudio' or 'parec'
        device_index: PyAudio input device (ignored for parec)
        sink_kind: 'console' or 'clipboard'
        console: Rich console shared by the UI and the console sink
    """

    def __init__(
        self,
        config: DictationConfig,
        source_kind: str = "pyaudio",
        device_index: Optional[int] = None,
        sink_kind: str = "console",
        console: Optional[Console] = None
    ):
        self.config = config
        self.source_kind = source_kind
        self.sink_kind = sink_kind
        self.console = console or Console()
        self.ui = TerminalUI(self.console)

        self.source = create_source(
            source_kind,
            sample_rate=config.sample_rate,
            channels=config.channels,
            frame_duration=config.frame_duration,
            device_index=device_index,
        )
        self.client = TranscriptionClient(
            config.base_url,
            endpoint=config.endpoint,
            timeout=config.request_timeout,
            sample_rate=config.sample_rate,
        )
        self.sink = create_sink(sink_kind, self.console)
        self.controller = SessionController(self._new_session)

    def _new_session(self) -> DictationSession:
        engine = SegmentationEngine(
            energy_threshold=self.config.energy_threshold,
            silence_duration=self.config.silence_duration,
        )
        return DictationSession(
            self.source,
            self.client,
            self.sink,
            engine=engine,
            queue_capacity=self.config.queue_capacity,
        )

    async def run(self) -> None:
        """
        Interactive loop: Enter toggles dictation until Ctrl+C or end of input.

        A session that ends on its own (for example because the microphone
        went away) is collected immediately so its error is shown without
        waiting for the next key press.
        """
        settings = describe(self.config)
        settings["source"] = self.source_kind
        settings["output"] = self.sink_kind
        self.ui.show_welcome(settings)

        enter: Optional[asyncio.Future] = None
        try:
            while True:
                if enter is None:
                    enter = asyncio.ensure_future(self.ui.wait_for_enter())

                waiters = {enter}
                finished = None
                if self.controller.is_active:
                    finished = asyncio.ensure_future(self.controller.wait())
                    waiters.add(finished)

                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
                if finished is not None and not finished.done():
                    finished.cancel()

                if enter.done():
                    if not enter.result():
                        break
                    enter = None

                await self.toggle()
        finally:
            if enter is not None and not enter.done():
                enter.cancel()
            await self.shutdown()

    async def toggle(self) -> None:
        """Start or stop a session and report the outcome."""
        was_active = self.controller.is_active
        try:
            transcript = await self.controller.toggle()
        except (CaptureError, TranscriptionError) as e:
            self.ui.show_error(e)
            transcript = self.controller.transcript

        if was_active:
            self.ui.show_session_stopped(transcript)
        else:
            self.ui.show_session_started()

    async def shutdown(self) -> None:
        """Stop any active session and release the HTTP client."""
        try:
            if self.controller.is_active:
                transcript = await self.controller.stop()
                self.ui.show_session_stopped(transcript)
        except (CaptureError, TranscriptionError) as e:
            self.ui.show_error(e)
        finally:
            await self.client.aclose()

    async def transcribe_file(self, path: Path) -> str:
        """
        Transcribe a 16-bit PCM WAV file in overlapping windows.

        Raises:
            ValueError: If the file is not 16-bit PCM at the configured rate
            wave.Error: If the file is not a readable WAV file
            TranscriptionError: If any window fails
        """
        info, samples = decode_wav(path.read_bytes())
        if info.sample_rate != self.config.sample_rate:
            raise ValueError(
                f"{path.name} is {info.sample_rate}Hz, expected {self.config.sample_rate}Hz"
            )

        strategy = ChunkingStrategy.from_durations(
            self.config.sample_rate,
            chunk_duration=self.config.chunk_duration,
            overlap=self.config.chunk_overlap,
        )
        logger.debug(f"{path.name}: {info.frame_count} samples, {info.channels} channel(s)")

        with self.console.status("🤖 Transcribing..."):
            return await strategy.transcribe(self.client, samples)

    async def run_file(self, path: Path) -> bool:
        """
        Transcribe a file and deliver the text.

        Returns:
            True on success, False if an error was shown.
        """
        try:
            text = await self.transcribe_file(path)
        except (wave.Error, ValueError, TranscriptionError) as e:
            self.ui.show_error(e)
            return False
        finally:
            await self.client.aclose()

        self.ui.show_transcript(text or "(no speech)", title=path.name)
        if not isinstance(self.sink, ConsoleSink):
            self.sink.inject(text)
        return True


@click.command()
@click.version_option(version=__version__)
@click.option('--host', default=None, help='Whisper server host [env WHISPERTYPE_HOST, default localhost]')
@click.option('--port', default=None, type=int, help='Whisper server port [env WHISPERTYPE_PORT, default 36124]')
@click.option(
    '--source', 'source_kind',
    default='pyaudio',
    help='Audio capture backend',
    type=click.Choice(['pyaudio', 'parec'])
)
@click.option('--device', 'device_index', default=None, type=int, help='PyAudio input device index')
@click.option(
    '--sink', 'sink_kind',
    default='console',
    help='Where transcribed phrases go',
    type=click.Choice(['console', 'clipboard'])
)
@click.option('--threshold', default=None, type=int, help='Energy below which a frame is silent (default 80)')
@click.option('--silence-ms', default=None, type=int, help='Silence that ends a phrase in ms (default 300)')
@click.option('--frame-seconds', default=None, type=float, help='Seconds of audio per frame (default 1.0)')
@click.option('--timeout', default=None, type=float, help='Whisper request timeout in seconds (default 30)')
@click.option(
    '--file', 'audio_file',
    default=None,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Transcribe a WAV file instead of dictating'
)
@click.option('--list-devices', is_flag=True, help='List audio input devices and exit')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
def main(
    host: Optional[str],
    port: Optional[int],
    source_kind: str,
    device_index: Optional[int],
    sink_kind: str,
    threshold: Optional[int],
    silence_ms: Optional[int],
    frame_seconds: Optional[float],
    timeout: Optional[float],
    audio_file: Optional[Path],
    list_devices: bool,
    verbose: bool
) -> None:
    """
    WhisperType - dictation through a whisper inference server.

    Press Enter to start dictating and Enter again to stop. Each phrase is
    transcribed as soon as you pause and sent to the chosen output.
    """
    setup_logging(verbose)

    try:
        config = DictationConfig.from_env(
            host=host,
            port=port,
            energy_threshold=threshold,
            silence_duration=silence_ms / 1000 if silence_ms is not None else None,
            frame_duration=frame_seconds,
            request_timeout=timeout,
        )
    except ConfigurationError as e:
        raise click.UsageError(str(e))

    if list_devices:
        ui = TerminalUI()
        try:
            devices = asyncio.run(get_available_devices())
        except DeviceError as e:
            ui.show_error(e)
            sys.exit(1)
        ui.show_devices(devices)
        return

    try:
        app = DictationApp(config, source_kind, device_index, sink_kind)

        if audio_file is not None:
            if not asyncio.run(app.run_file(audio_file)):
                sys.exit(1)
            return

        asyncio.run(app.run())

    except KeyboardInterrupt:
        click.echo("\nApplication interrupted by user.")
        sys.exit(0)
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
