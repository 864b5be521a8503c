"""Client package — upload pipeline and HTTP access to the upload-ai API.

WHY: Everything that runs on the user's side lives here: the HTTP client
and the state machine that takes a video from disk to a transcription
request.

HOW: UploadAiClient wraps httpx; ConversionStateMachine sequences the
extractor and the client through the conversion stages.

RULES:
- All HTTP calls go through UploadAiClient (no direct httpx usage elsewhere)
"""

from upload_ai.client.api import UploadAiClient
from upload_ai.client.conversion import (
    ConversionDependencies,
    ConversionJob,
    ConversionStateMachine,
    Status,
)

__all__ = [
    "ConversionDependencies",
    "ConversionJob",
    "ConversionStateMachine",
    "Status",
    "UploadAiClient",
]
