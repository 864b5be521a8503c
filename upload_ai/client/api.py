"""Async HTTP client for the upload-ai API.

WHY: The conversion pipeline needs to upload the extracted audio, ask for
a transcript, and later stream completions. This module keeps all HTTP
details behind one client class so the state machine, the CLI and the
tests never touch httpx directly.

HOW: Uses httpx.AsyncClient for non-blocking HTTP. UploadAiClient is an
async context manager — enter it to open the connection pool, exit to
close it. Each API step is a separate method:
upload_audio → request_transcription → wait_for_transcription → stream_completion.

RULES:
- Always use the async context manager (async with UploadAiClient() as client:)
- Every network failure or non-2xx response raises TransportError
- TransportError.message prefers the API's {"error": ...} body text
- No method retries; retry policy belongs to the caller
- Polling uses exponential backoff: 2s initial, 1.5x factor, 15s max
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable

import httpx

from upload_ai.client.models import PromptTemplate, VideoRecord
from upload_ai.config import API_BASE_URL, DEFAULT_TEMPERATURE
from upload_ai.errors import TransportError
from upload_ai.media.extractor import AudioArtifact

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_POLL_TIMEOUT_S = 30 * 60  # 30 minutes


class TranscriptionTimeoutError(TimeoutError):
    """Raised when a transcript does not appear within the polling timeout.

    RULES:
    - Message includes the video ID and elapsed time
    """


class UploadAiClient:
    """Async client for the upload-ai HTTP API.

    WHY: Provides a typed interface for the client side of the workflow:
    upload → transcribe → (poll) → complete. Handles error wrapping so
    callers only ever see TransportError.

    HOW: Wraps httpx.AsyncClient. ``transport`` lets tests plug in an
    httpx.MockTransport instead of a real network.

    RULES:
    - Use as: async with UploadAiClient() as client: ...
    - base_url defaults to API_BASE_URL from config
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (base_url or API_BASE_URL).rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> UploadAiClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "UploadAiClient must be used as an async context manager: "
                "async with UploadAiClient() as client: ..."
            )
        return self._client

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        client = self._ensure_client()
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError("{} {} failed: {}".format(method, url, exc)) from exc
        if not resp.is_success:
            raise _error_from_response(resp)
        return resp

    # ------------------------------------------------------------------
    # Step 1: Upload audio
    # ------------------------------------------------------------------

    async def upload_audio(
        self,
        artifact: AudioArtifact,
        on_status: Callable[[str], None] | None = None,
    ) -> str:
        """Upload the extracted audio and return the new MediaItem ID.

        HOW: Sends a multipart/form-data POST /videos with the audio in the
        ``file`` field. The response JSON is ``{"video": {...}}``.

        RULES:
        - Raises TransportError on network failure or non-2xx responses
        - Raises TransportError if the response carries no video ID
        """
        if on_status:
            on_status("Uploading {} bytes of audio...".format(artifact.size))

        resp = await self._request(
            "POST",
            "/videos",
            files={"file": (artifact.filename, artifact.data, artifact.content_type)},
        )
        try:
            video_id = resp.json()["video"]["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise TransportError("Upload response did not contain a video id.") from exc

        logger.info("Uploaded audio as video %s", video_id)
        return video_id

    # ------------------------------------------------------------------
    # Step 2: Request transcription
    # ------------------------------------------------------------------

    async def request_transcription(
        self,
        video_id: str,
        prompt: str | None = None,
        on_status: Callable[[str], None] | None = None,
    ) -> None:
        """Ask the API to transcribe a video.

        WHY: Transcription runs server-side and asynchronously. This call
        only needs the request to be accepted; the transcript is written
        to the MediaItem later.

        RULES:
        - prompt is free-text guidance (keywords, spelling) for the speech model
        - Returns as soon as the API accepts (2xx); does not wait for the text
        - Raises TransportError on submission failure
        """
        if on_status:
            on_status("Requesting transcription...")

        await self._request(
            "POST",
            "/videos/{}/transcription".format(video_id),
            json={"prompt": prompt},
        )
        logger.info("Transcription requested for video %s", video_id)

    # ------------------------------------------------------------------
    # Step 3: Poll for the transcript
    # ------------------------------------------------------------------

    async def get_video(self, video_id: str) -> VideoRecord:
        resp = await self._request("GET", "/videos/{}".format(video_id))
        return VideoRecord.from_dict(resp.json()["video"])

    async def wait_for_transcription(
        self,
        video_id: str,
        on_status: Callable[[str], None] | None = None,
        timeout_s: float = _POLL_TIMEOUT_S,
    ) -> str:
        """Poll GET /videos/{id} until the transcript is present and return it.

        HOW: Exponential backoff — starts at 2s intervals, grows by 1.5x per
        poll, capped at 15s.

        RULES:
        - A missing transcript is the expected pending state, not an error
        - Raises TranscriptionTimeoutError after timeout_s seconds
        """
        interval = _POLL_INITIAL_INTERVAL_S
        start_time = time.monotonic()

        while True:
            video = await self.get_video(video_id)
            if video.transcription is not None:
                if on_status:
                    on_status("Transcription complete.")
                return video.transcription

            elapsed = time.monotonic() - start_time
            if elapsed > timeout_s:
                raise TranscriptionTimeoutError(
                    "Transcription of video {} not ready after {:.0f}s (limit: {:.0f}s)".format(
                        video_id, elapsed, timeout_s
                    )
                )
            if on_status:
                on_status("Waiting for transcription... ({}m {:02d}s)".format(
                    int(elapsed) // 60, int(elapsed) % 60
                ))

            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    # ------------------------------------------------------------------
    # Completions
    # ------------------------------------------------------------------

    async def list_prompts(self) -> list[PromptTemplate]:
        resp = await self._request("GET", "/prompts")
        return [PromptTemplate.from_dict(p) for p in resp.json()]

    async def stream_completion(
        self,
        video_id: str,
        template: str,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> AsyncIterator[str]:
        """Yield completion text as the API relays it.

        RULES:
        - Fragments are yielded in receipt order, unmodified
        - Closing the iterator early closes the HTTP response
        - Error responses (4xx/5xx) raise TransportError before any text
        """
        client = self._ensure_client()
        body = {"temperature": temperature, "template": template, "videoId": video_id}
        try:
            async with client.stream("POST", "/ai/complete", json=body) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise _error_from_response(resp)
                async for text in resp.aiter_text():
                    if text:
                        yield text
        except httpx.HTTPError as exc:
            raise TransportError("Completion stream failed: {}".format(exc)) from exc

    async def complete(
        self,
        video_id: str,
        template: str,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> str:
        """Request a buffered (non-streaming) completion."""
        resp = await self._request(
            "POST",
            "/ai/complete",
            params={"stream": "false"},
            json={"temperature": temperature, "template": template, "videoId": video_id},
        )
        return resp.json()["completion"]


def _error_from_response(resp: httpx.Response) -> TransportError:
    """Build a TransportError from a non-2xx response, preferring its error body."""
    message = resp.text
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        message = body["error"]
    return TransportError(
        "upload-ai API error {}: {}".format(resp.status_code, message),
        status_code=resp.status_code,
    )
