"""FastAPI application: video upload, transcription, and streamed completions.

WHY: The client pipeline needs somewhere to upload audio and request a
transcript, and the UI needs an endpoint that turns a transcript and a
prompt template into model output, streamed as it is generated. FastAPI
provides request validation, OpenAPI docs and streaming responses.

HOW: create_app() builds a FastAPI app around injected collaborators:
the media store, the language-model provider and the transcriber. Tests
run against fakes and production wires in the OpenAI adapters.
Routes are registered inside the factory and close over those objects.

Endpoints:
  POST /videos                           upload an MP3, create a media item
  GET  /videos/{videoId}                 read a media item (poll for transcript)
  POST /videos/{videoId}/transcription   schedule background transcription
  POST /ai/complete                      stream (or buffer) a completion
  GET  /prompts                          list built-in prompt templates
  GET  /health                           liveness check

RULES:
- Every error response body is {"error": "<message>"}
- Request validation failures answer 400, not FastAPI's default 422
- Completion responses carry permissive CORS headers on every response
- Provider clients are closed in the app lifespan, never at import time
- Media written by a store the app created is deleted on shutdown
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional
from uuid import UUID

from fastapi import BackgroundTasks, FastAPI, File, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from upload_ai import __version__
from upload_ai.config import (
    API_HOST,
    API_PORT,
    COMPLETION_MAX_SECONDS,
    MAX_UPLOAD_BYTES,
    SUPPORTED_UPLOAD_FORMATS,
)
from upload_ai.errors import (
    TranscriptAlreadySetError,
    UploadAiError,
    ValidationError,
)
from upload_ai.server.models import (
    CompletionRequest,
    CompletionResponse,
    ErrorResponse,
    HealthResponse,
    PromptResponse,
    TranscriptionAcceptedResponse,
    TranscriptionRequest,
    VideoEnvelope,
    VideoResponse,
)
from upload_ai.server.prompts import DEFAULT_PROMPTS, Prompt
from upload_ai.server.provider import (
    LanguageModelProvider,
    OpenAIChatProvider,
    OpenAITranscriber,
    Transcriber,
    create_openai_client,
)
from upload_ai.server.relay import CompletionStream, CompletionStreamProxy
from upload_ai.server.store import MediaItem, MediaStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
}

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


class RelayResponse(StreamingResponse):
    """StreamingResponse that always closes its completion stream.

    Starlette stops iterating the body when the client disconnects but
    leaves the iterator suspended; closing it here releases the provider
    stream deterministically instead of at garbage collection.
    """

    def __init__(self, stream: CompletionStream, **kwargs) -> None:
        super().__init__(stream, **kwargs)
        self._stream = stream

    async def __call__(self, scope, receive, send) -> None:  # noqa: ANN001
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self._stream.aclose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _item_to_response(item: MediaItem) -> VideoEnvelope:
    return VideoEnvelope(
        video=VideoResponse(
            id=item.id,
            name=item.name,
            transcription=item.transcription,
            created_at=item.created_at,
        )
    )


def _validate_upload(filename: str, content: bytes) -> None:
    """Raise ValidationError for unsupported, empty or oversized uploads."""
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_UPLOAD_FORMATS:
        raise ValidationError("Invalid input type, please upload a MP3.")
    if not content:
        raise ValidationError("Uploaded file is empty.")
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError(
            "Uploaded file is too large ({:,} bytes, max {:,}).".format(
                len(content), MAX_UPLOAD_BYTES
            )
        )


def _describe_validation_error(exc: RequestValidationError) -> str:
    """Flatten pydantic's error list into one readable line."""
    parts = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc)
        parts.append("{}: {}".format(field, err.get("msg")) if field else str(err.get("msg")))
    return "; ".join(parts) or "Invalid request."


async def _run_transcription(
    item_id: str,
    prompt: Optional[str],
    store: MediaStore,
    transcriber: Transcriber,
) -> None:
    """Transcribe a stored item and write the transcript back.

    WHY: Speech-to-text takes far longer than an HTTP request should, so
    the route only schedules this task and answers 202.

    RULES:
    - Failures are logged; the item simply stays without a transcript
    - A transcript that appeared meanwhile is not overwritten
    """
    item = store.get_item(item_id)
    if item is None:
        return

    try:
        transcription = await transcriber.transcribe(item.path, prompt)
        store.set_transcription(item_id, transcription)
    except Exception:
        logger.exception("Transcription failed for video %s", item_id)


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(
    store: Optional[MediaStore] = None,
    provider: Optional[LanguageModelProvider] = None,
    transcriber: Optional[Transcriber] = None,
    prompts: Optional[List[Prompt]] = None,
    max_stream_seconds: float = COMPLETION_MAX_SECONDS,
) -> FastAPI:
    """Build the API around the given collaborators.

    RULES:
    - Missing provider/transcriber default to the OpenAI adapters, sharing
      one AsyncOpenAI client (requires OPENAI_API_KEY)
    - The store defaults to a fresh MediaStore, removed again on shutdown;
      an injected store is left to its owner
    """
    owns_store = store is None
    store = store if store is not None else MediaStore()
    if provider is None or transcriber is None:
        openai_client = create_openai_client()
        provider = provider or OpenAIChatProvider(openai_client)
        transcriber = transcriber or OpenAITranscriber(openai_client)
    prompt_list = list(prompts) if prompts is not None else list(DEFAULT_PROMPTS)
    relay = CompletionStreamProxy(store, provider, max_stream_seconds=max_stream_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Close provider connections and drop owned media on shutdown."""
        yield
        await provider.aclose()
        await transcriber.aclose()
        if owns_store:
            store.clear()
            logger.info("Removed stored media on shutdown")

    app = FastAPI(
        lifespan=lifespan,
        title="upload-ai API",
        description=(
            "Upload the audio of a video, transcribe it, and stream language-model "
            "completions built from prompt templates and the stored transcript."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.store = store
    app.state.relay = relay

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(UploadAiError)
    async def handle_upload_ai_error(_: Request, exc: UploadAiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code or 500,
            content={"error": exc.message},
            headers=CORS_HEADERS,
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": _describe_validation_error(exc)},
            headers=CORS_HEADERS,
        )

    # -----------------------------------------------------------------------
    # Endpoints: Videos
    # -----------------------------------------------------------------------

    @app.post(
        "/videos",
        response_model=VideoEnvelope,
        response_model_by_alias=True,
        status_code=201,
        tags=["videos"],
        summary="Upload a video's audio",
        description=(
            "Upload the MP3 extracted from a video. Returns the new video record; "
            "request its transcription next."
        ),
        responses={400: {"model": ErrorResponse, "description": "Missing, empty, non-MP3 or oversized file"}},
    )
    async def upload_video(
        file: Annotated[UploadFile, File(description="MP3 audio extracted from the video")],
    ) -> VideoEnvelope:
        filename = Path(file.filename or "audio.mp3").name
        content = await file.read()
        _validate_upload(filename, content)

        item = await asyncio.to_thread(store.create_item, filename, content)
        return _item_to_response(item)

    @app.get(
        "/videos/{video_id}",
        response_model=VideoEnvelope,
        response_model_by_alias=True,
        tags=["videos"],
        summary="Get a video",
        description="Poll this endpoint until transcription is no longer null.",
        responses={
            400: {"model": ErrorResponse, "description": "Malformed video id"},
            404: {"model": ErrorResponse, "description": "Video not found"},
        },
    )
    async def get_video(video_id: UUID) -> VideoEnvelope:
        return _item_to_response(store.require_item(str(video_id)))

    @app.post(
        "/videos/{video_id}/transcription",
        response_model=TranscriptionAcceptedResponse,
        response_model_by_alias=True,
        status_code=202,
        tags=["videos"],
        summary="Request a transcription",
        description=(
            "Schedule transcription of the video's audio. The transcript is written "
            "to the video record when ready; poll GET /videos/{videoId}."
        ),
        responses={
            400: {"model": ErrorResponse, "description": "Malformed video id or body"},
            404: {"model": ErrorResponse, "description": "Video not found"},
            409: {"model": ErrorResponse, "description": "Transcription already generated"},
        },
    )
    async def create_transcription(
        video_id: UUID,
        background_tasks: BackgroundTasks,
        body: Optional[TranscriptionRequest] = None,
    ) -> TranscriptionAcceptedResponse:
        item = store.require_item(str(video_id))
        if item.transcription is not None:
            raise TranscriptAlreadySetError(item.id)

        prompt = body.prompt if body is not None else None
        background_tasks.add_task(_run_transcription, item.id, prompt, store, transcriber)
        logger.info("Scheduled transcription for video %s", item.id)
        return TranscriptionAcceptedResponse(video_id=item.id, status="accepted")

    # -----------------------------------------------------------------------
    # Endpoints: Completions
    # -----------------------------------------------------------------------

    @app.post(
        "/ai/complete",
        tags=["completions"],
        summary="Generate a completion from a video's transcript",
        description=(
            "Fill the template's {transcription} placeholder with the video's transcript "
            "and relay the language model's output as a text stream. With stream=false "
            "the whole completion is returned as JSON instead."
        ),
        responses={
            200: {
                "content": {"text/plain": {}},
                "description": "Streamed completion text, or {\"completion\": ...} with stream=false",
            },
            400: {"model": ErrorResponse, "description": "Invalid request or transcription not generated yet"},
            404: {"model": ErrorResponse, "description": "Video not found"},
            502: {"model": ErrorResponse, "description": "Language model failed before producing output"},
        },
    )
    async def complete(
        body: CompletionRequest,
        request: Request,
        stream: Annotated[bool, Query(description="Stream the output (default) or buffer it.")] = True,
    ):
        video_id = str(body.video_id)
        if not stream:
            text = await relay.complete(video_id, body.template, body.temperature)
            return JSONResponse(
                content=CompletionResponse(completion=text).model_dump(),
                headers=CORS_HEADERS,
            )

        completion = await relay.open(
            video_id,
            body.template,
            body.temperature,
            is_disconnected=request.is_disconnected,
        )
        return RelayResponse(
            completion,
            media_type=STREAM_MEDIA_TYPE,
            headers={**CORS_HEADERS, "Cache-Control": "no-cache"},
        )

    # -----------------------------------------------------------------------
    # Endpoints: Prompts and health
    # -----------------------------------------------------------------------

    @app.get(
        "/prompts",
        response_model=List[PromptResponse],
        tags=["prompts"],
        summary="List prompt templates",
        description="Built-in templates that can be sent as the template of POST /ai/complete.",
    )
    async def list_prompts() -> List[PromptResponse]:
        return [PromptResponse(id=p.id, title=p.title, template=p.template) for p in prompt_list]

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
        summary="Health check",
        description="Liveness check for load balancers and orchestrators.",
    )
    async def health_check() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    return app


def run_api(host: str = API_HOST, port: int = API_PORT) -> None:
    """Entry point for the upload-ai-api console script."""
    import uvicorn

    uvicorn.run("upload_ai.server.app:create_app", factory=True, host=host, port=port)
