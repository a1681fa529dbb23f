"""
Destinations for transcribed text.

A sink receives each phrase as soon as it is transcribed, in the order the
phrases were spoken. Empty phrases are ignored.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import pyperclip
from rich.console import Console
from rich.text import Text

logger = logging.getLogger(__name__)


class TextSink(ABC):
    """Receives phrase text from a dictation session."""

    @abstractmethod
    def inject(self, text: str) -> None:
        """Deliver one phrase. Must return promptly."""
        pass

    def reset(self) -> None:
        """Forget anything kept from a previous session."""
        pass


class ConsoleSink(TextSink):
    """Print each phrase to the terminal as it arrives."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def inject(self, text: str) -> None:
        if not text:
            return
        self.console.print(Text(text, style="green"))


class ClipboardSink(TextSink):
    """
    Keep the running transcript on the system clipboard.

    Each phrase is appended to the text already copied during the current
    session, so pasting at any point gives everything dictated so far.
    """

    def __init__(self):
        self._phrases: List[str] = []

    @property
    def text(self) -> str:
        return " ".join(self._phrases)

    def reset(self) -> None:
        self._phrases = []

    def inject(self, text: str) -> None:
        if not text:
            return

        self._phrases.append(text)
        try:
            pyperclip.copy(self.text)
        except pyperclip.PyperclipException as e:
            logger.warning(f"Could not copy to clipboard: {e}")


def create_sink(kind: str, console: Optional[Console] = None) -> TextSink:
    """
    Create a text sink by name.

    Args:
        kind: 'console' or 'clipboard'

    Raises:
        ValueError: If the sink kind is unknown
    """
    if kind == "console":
        return ConsoleSink(console)
    if kind == "clipboard":
        return ClipboardSink()
    raise ValueError(f"Unknown text sink: {kind!r}")
