"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Pydantic
models enforce field types and ranges at runtime, so an out-of-range
temperature or a malformed video id never reaches the relay.

HOW: Each endpoint has its own request and/or response model. JSON field
names follow the API's camelCase (videoId, createdAt) through aliases;
Python code uses snake_case.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Every error response is ErrorResponse: {"error": "<message>"}
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from upload_ai.config import DEFAULT_TEMPERATURE

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CompletionRequest(BaseModel):
    """Body of POST /ai/complete.

    RULES:
    - temperature must lie in [0, 1]; defaults to 0.5
    - template should contain the {transcription} placeholder
    - videoId must be a UUID
    """

    model_config = ConfigDict(populate_by_name=True)

    temperature: float = Field(
        default=DEFAULT_TEMPERATURE,
        ge=0.0,
        le=1.0,
        description="Sampling temperature between 0 and 1.",
    )
    template: str = Field(
        description="Prompt template. The first {transcription} is replaced by the transcript.",
    )
    video_id: UUID = Field(
        alias="videoId",
        description="ID of a video whose transcription has been generated.",
    )


class TranscriptionRequest(BaseModel):
    """Body of POST /videos/{videoId}/transcription."""

    prompt: Optional[str] = Field(
        default=None,
        description="Optional guidance for the speech model, e.g. comma-separated keywords.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class VideoResponse(BaseModel):
    """A stored media item."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(description="Video identifier (UUID).")
    name: str = Field(description="Uploaded audio filename.")
    transcription: Optional[str] = Field(
        default=None,
        description="Transcript text, or null while transcription has not finished.",
    )
    created_at: float = Field(
        alias="createdAt",
        description="Creation timestamp (Unix epoch seconds).",
    )


class VideoEnvelope(BaseModel):
    """Wrapper returned by POST /videos and GET /videos/{videoId}."""

    video: VideoResponse


class TranscriptionAcceptedResponse(BaseModel):
    """Returned when a transcription has been scheduled."""

    model_config = ConfigDict(populate_by_name=True)

    video_id: str = Field(alias="videoId", description="The video being transcribed.")
    status: str = Field(description="Always 'accepted'.")


class CompletionResponse(BaseModel):
    """Body of a non-streaming completion (POST /ai/complete?stream=false)."""

    completion: str = Field(description="The full model output.")


class PromptResponse(BaseModel):
    """A built-in prompt template."""

    id: str = Field(description="Stable prompt identifier.")
    title: str = Field(description="Human-readable prompt name.")
    template: str = Field(description="Template text using the {transcription} placeholder.")


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
