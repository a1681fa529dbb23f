"""
WhisperType - hands-free dictation through a whisper inference server.

Captures microphone audio, cuts it into phrases at pauses, and streams the
transcription of each phrase to the terminal or the clipboard as you speak.
"""

__version__ = "0.1.0"
__author__ = "WhisperType contributors"
__description__ = "Streaming dictation through a whisper inference server"
