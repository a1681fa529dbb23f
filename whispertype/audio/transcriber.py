"""
Speech-to-text through a whisper.cpp-compatible inference server.

Each phrase is encoded as a WAV file and posted as a multipart form to the
server's inference endpoint. The client owns its HTTP connection pool and is
meant to be created once per pipeline and passed to whoever needs it.
"""

import logging
import time
from typing import Optional

import httpx
import numpy as np

from .wav import encode_wav

logger = logging.getLogger(__name__)

# whisper.cpp returns this for audio without speech
BLANK_AUDIO = "[BLANK_AUDIO]"


class TranscriptionError(Exception):
    """
    Raised when a phrase could not be transcribed.

    Attributes:
        status_code: HTTP status of the failed response, if one was received
        body: Response body of the failed response, if one was received
    """

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when the server does not answer within the request timeout."""
    pass


class TranscriptionDecodeError(TranscriptionError):
    """Raised when the server response is not the expected JSON object."""
    pass


def normalize_text(text: str) -> str:
    """Trim server output and map the blank-audio marker to an empty string."""
    text = text.strip()
    if text == BLANK_AUDIO:
        return ""
    return text


class TranscriptionClient:
    """
    Client for a whisper inference server.

    Features:
    - One HTTP client per instance, closed with the instance
    - Bounded per-request timeout, no automatic retry
    - Blank-audio responses reported as an empty (successful) transcription

    Args:
        base_url: Server base URL, e.g. ``http://localhost:36124``
        endpoint: Inference path on the server
        timeout: Per-request timeout in seconds
        sample_rate: Sample rate written to the WAV header
        client: Pre-built ``httpx.AsyncClient`` (the caller keeps ownership)

    Example:
        >>> async with TranscriptionClient("http://localhost:36124") as client:
        ...     text = await client.transcribe(samples)
    """

    def __init__(
        self,
        base_url: str,
        endpoint: str = "/inference",
        timeout: float = 30.0,
        sample_rate: int = 16000,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        self.timeout = timeout
        self.sample_rate = sample_rate

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        """Full inference URL."""
        return f"{self.base_url}{self.endpoint}"

    async def transcribe(self, samples: np.ndarray) -> str:
        """
        Transcribe a phrase.

        Args:
            samples: Mono int16 samples at ``sample_rate``

        Returns:
            Transcribed text, or an empty string for blank audio.

        Raises:
            TranscriptionTimeoutError: If the request timed out
            TranscriptionDecodeError: If the response body is malformed
            TranscriptionError: On network failure or a non-success status
        """
        wav_data = encode_wav(samples, self.sample_rate)
        files = {"file": ("audio.wav", wav_data, "audio/wav")}
        data = {"response_format": "json"}

        start_time = time.time()
        try:
            response = await self._client.post(self.url, files=files, data=data, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise TranscriptionTimeoutError(
                f"Transcription timed out after {self.timeout:g}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Transcription request failed: {e}") from e

        if not response.is_success:
            raise TranscriptionError(
                f"Bad status: {response.status_code} {response.reason_phrase}, body: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        text = normalize_text(self._parse_text(response))

        processing_time = time.time() - start_time
        audio_duration = len(samples) / self.sample_rate
        logger.info(
            f"Transcription completed: {processing_time:.2f}s for {audio_duration:.2f}s audio"
        )
        return text

    @staticmethod
    def _parse_text(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError as e:
            raise TranscriptionDecodeError(
                f"Decoding response: {e}", status_code=response.status_code, body=response.text
            ) from e

        if not isinstance(payload, dict):
            raise TranscriptionDecodeError(
                f"Decoding response: expected a JSON object, got {type(payload).__name__}",
                status_code=response.status_code,
                body=response.text,
            )

        text = payload.get("text", "")
        if not isinstance(text, str):
            raise TranscriptionDecodeError(
                f"Decoding response: 'text' must be a string, got {type(text).__name__}",
                status_code=response.status_code,
                body=response.text,
            )
        return text

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TranscriptionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit with cleanup."""
        await self.aclose()
