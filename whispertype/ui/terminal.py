"""
Rich-based terminal user interface.

Provides the interactive front end for WhisperType: a welcome panel with the
active settings, Enter-to-toggle prompts, live session status, and the final
transcript when a session stops.
"""

from typing import List, Optional
import asyncio
import threading
import time

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..session import Transcript


class TerminalUI:
    """
    Rich-based terminal interface for the dictation application.

    Phrases themselves are printed by the console sink as they arrive; this
    class handles everything around them.
    """

    def __init__(self, console: Optional[Console] = None):
        """Initialize the terminal UI."""
        self.console = console or Console()
        self._session_start_time: Optional[float] = None

    def show_welcome(self, settings: dict) -> None:
        """
        Show the welcome panel and usage instructions.

        Args:
            settings: Label to value mapping shown under the title
        """
        welcome_text = Text()
        welcome_text.append("🎙️  WhisperType", style="bold magenta")
        welcome_text.append("\n\nDictation through your whisper server\n")
        for label, value in settings.items():
            welcome_text.append(f"\n{label.capitalize()}: ", style="cyan")
            welcome_text.append(str(value))

        panel = Panel(
            welcome_text,
            title="Welcome",
            title_align="center",
            border_style="cyan",
            padding=(1, 2)
        )

        self.console.print(panel)
        self.console.print("\n📋 Instructions:")
        self.console.print("  • Press [bold green]Enter[/bold green] to start dictating")
        self.console.print("  • Pause briefly between phrases; each one appears as it is transcribed")
        self.console.print("  • Press [bold red]Enter[/bold red] again to stop")
        self.console.print("  • Press [bold]Ctrl+C[/bold] to quit")
        self.console.print()

    async def wait_for_enter(self, prompt: str = "") -> bool:
        """
        Wait for the user to press Enter without blocking the event loop.

        The read runs on a daemon thread so that a pending prompt never keeps
        the process alive after the event loop has exited.

        Returns:
            True when Enter was pressed, False on Ctrl+C or end of input.
        """
        loop = asyncio.get_event_loop()
        result = loop.create_future()

        def resolve(pressed: bool) -> None:
            if not result.done():
                result.set_result(pressed)

        def read_line() -> None:
            try:
                input(prompt)
                pressed = True
            except (EOFError, KeyboardInterrupt):
                pressed = False
            try:
                loop.call_soon_threadsafe(resolve, pressed)
            except RuntimeError:
                pass  # loop already closed

        threading.Thread(target=read_line, name="whispertype-input", daemon=True).start()
        return await result

    def show_session_started(self) -> None:
        """Display the dictation indicator."""
        self._session_start_time = time.time()

        panel = Panel(
            Text("🔴 LISTENING", style="bold red") + Text("\n\nSpeak now... Press Enter to stop", style="white"),
            title="Dictation",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        )

        self.console.print(panel)

    def show_session_stopped(self, transcript: Optional[Transcript]) -> None:
        """
        Show how long the session ran and the complete transcript.

        Args:
            transcript: Transcript returned by the session, if any
        """
        if self._session_start_time:
            duration = time.time() - self._session_start_time
            self.console.print(f"⏹️  Dictation stopped ({duration:.1f}s)")
        else:
            self.console.print("⏹️  Dictation stopped")
        self._session_start_time = None

        if not transcript or not transcript.text:
            self.console.print("[yellow]No speech was transcribed.[/yellow]")
            return

        self.show_transcript(transcript.text, title=f"Transcript ({len(transcript)} phrase(s))")
        self.console.print("[dim]Press Enter to start dictating again.[/dim]")

    def show_transcript(self, text: str, title: str = "Transcript") -> None:
        """Display transcribed text in a panel."""
        panel = Panel(
            Text(text, style="white"),
            title=title,
            title_align="center",
            border_style="green",
            padding=(1, 2)
        )

        self.console.print(panel)

    def show_devices(self, devices: List[dict]) -> None:
        """
        Display available input devices in a table.

        Args:
            devices: Device dictionaries from ``get_available_devices``
        """
        if not devices:
            self.console.print("[yellow]No audio input devices found.[/yellow]")
            return

        table = Table(
            title="Audio Input Devices",
            title_style="bold cyan",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold white"
        )

        table.add_column("Index", style="cyan", width=6)
        table.add_column("Name", style="white")
        table.add_column("Channels", style="magenta", width=9)
        table.add_column("Rate", style="yellow", width=8)
        table.add_column("Default", style="green", width=8)

        for device in devices:
            table.add_row(
                str(device['index']),
                device['name'],
                str(device['channels']),
                str(device['sample_rate']),
                "✓" if device.get('is_default') else ""
            )

        self.console.print(table)

    def show_error(self, error: Exception) -> None:
        """
        Display error message with Rich formatting.

        Args:
            error: Exception to display
        """
        error_message = str(error)
        lowered = error_message.lower()

        # Provide helpful guidance for common errors
        if "permission" in lowered or "audio" in lowered or "capture" in lowered:
            guidance = "\n\n💡 Check that a microphone is connected and your terminal may use it."
        elif "timed out" in lowered or "timeout" in lowered:
            guidance = "\n\n💡 Try again - the whisper server might be busy or still loading its model."
        elif "connect" in lowered or "request failed" in lowered or "bad status" in lowered:
            guidance = "\n\n💡 Check that the whisper server is running and the host and port are correct."
        else:
            guidance = ""

        panel = Panel(
            Text(f"❌ {error_message}{guidance}", style="red"),
            title="Error",
            title_align="center",
            border_style="red",
            padding=(1, 2)
        )

        self.console.print(panel)
