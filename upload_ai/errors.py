"""Typed errors shared by the client pipeline and the HTTP API.

WHY: Every stage reports failure to its direct caller as a typed
exception, so callers can tell a bad request from a dead network from a
broken media file without parsing messages. The API turns the same
types into ``{"error": message}`` responses.

HOW: One base class carrying a human-readable message and the HTTP
status the API answers with. Client-side errors (conversion, transport)
have no meaningful HTTP status and keep the 500 default.

RULES:
- message is short and safe to show to an end user
- status_code is only consulted by the API exception handler
"""

from __future__ import annotations


class UploadAiError(Exception):
    """Base exception for all upload-ai errors."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(UploadAiError):
    """Malformed or out-of-range request field. Never retried."""

    status_code = 400


class MediaNotFoundError(UploadAiError):
    """No MediaItem exists for the given identifier."""

    status_code = 404

    def __init__(self, media_id: str) -> None:
        self.media_id = media_id
        super().__init__("Video not found.")


class MissingTranscriptError(UploadAiError):
    """The MediaItem has no transcript yet. The caller may poll and retry."""

    status_code = 400

    def __init__(self, message: str = "Video transcription was not generated yet.") -> None:
        super().__init__(message)


class TranscriptAlreadySetError(UploadAiError):
    """A transcript is written exactly once per MediaItem."""

    status_code = 409

    def __init__(self, media_id: str) -> None:
        self.media_id = media_id
        super().__init__("Video transcription was already generated.")


class ConversionError(UploadAiError):
    """The media engine could not produce the audio artifact. Fatal to the job."""


class TransportError(UploadAiError):
    """Network or server failure while talking to the upload-ai API.

    status_code is the HTTP status of the failed response, or None when
    no response was received at all.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamStreamError(UploadAiError):
    """The language-model or speech-to-text provider failed."""

    status_code = 502
