"""Conversion state machine: video → audio → upload → transcription request.

WHY: Getting a transcript out of a video takes three dependent async
steps, and a UI needs to know at any moment which one is running. A
single object that owns the "current stage" and moves it strictly
forward is easier to reason about than chained callbacks.

HOW: Three components work together:
  Status                  — ordered enum of the stages
  ConversionJob           — frozen dataclass holding one video's progress
  ConversionStateMachine  — owns the current job, runs the stage
                            functions in sequence and advances the status

Each stage is a plain async function ``(job, deps) -> (job, next_status)``.
Stages never touch the machine; only ConversionStateMachine._advance()
writes the status field.

RULES:
- waiting → converting → uploading → generation → success, nothing else
- _advance() rejects backward, repeated or skipped transitions
- A failing stage leaves the status where it was, records the error on
  the job and re-raises the typed error; there is no automatic recovery
- A failed or finished job is retried by selecting the file again
- One active job per machine; no two stages ever overlap
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

from upload_ai.errors import UploadAiError
from upload_ai.media.extractor import (
    AudioArtifact,
    AudioExtractor,
    ProgressCallback,
    VideoSource,
)

logger = logging.getLogger(__name__)


class Status(str, enum.Enum):
    """Stages of a conversion job, in the only order they may occur.

    RULES:
    - waiting: file selected, not yet submitted
    - converting: audio being extracted from the video
    - uploading: audio being sent to the API
    - generation: transcription being requested
    - success: transcription accepted; the transcript arrives later
    """

    WAITING = "waiting"
    CONVERTING = "converting"
    UPLOADING = "uploading"
    GENERATION = "generation"
    SUCCESS = "success"

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


_ORDER: List[Status] = [
    Status.WAITING,
    Status.CONVERTING,
    Status.UPLOADING,
    Status.GENERATION,
    Status.SUCCESS,
]


class InvalidTransitionError(RuntimeError):
    """Raised when a status change would not move exactly one step forward."""


class JobInProgressError(RuntimeError):
    """Raised when the machine is asked to start or replace a running job."""


@dataclass(frozen=True)
class ConversionJob:
    """One video's trip through the pipeline.

    RULES:
    - audio is set once the converting stage succeeds
    - media_id is set once the uploading stage succeeds
    - error is set when a stage fails; status then names the failed stage
    """

    source: VideoSource
    status: Status = Status.WAITING
    prompt: Optional[str] = None
    audio: Optional[AudioArtifact] = None
    media_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class Uploader(Protocol):
    async def upload_audio(self, artifact: AudioArtifact) -> str: ...


class TranscriptionRequester(Protocol):
    async def request_transcription(self, video_id: str, prompt: Optional[str] = None) -> None: ...


@dataclass
class ConversionDependencies:
    """Collaborators the stages call. UploadAiClient serves as both uploader and requester."""

    extractor: AudioExtractor
    uploader: Uploader
    transcriber: TranscriptionRequester
    on_progress: Optional[ProgressCallback] = None


# ---------------------------------------------------------------------------
# Stage functions
# ---------------------------------------------------------------------------


async def convert_stage(
    job: ConversionJob, deps: ConversionDependencies
) -> Tuple[ConversionJob, Status]:
    audio = await deps.extractor.extract(job.source, on_progress=deps.on_progress)
    return replace(job, audio=audio), Status.UPLOADING


async def upload_stage(
    job: ConversionJob, deps: ConversionDependencies
) -> Tuple[ConversionJob, Status]:
    if job.audio is None:
        raise InvalidTransitionError("Cannot upload before the audio was extracted.")
    media_id = await deps.uploader.upload_audio(job.audio)
    return replace(job, media_id=media_id), Status.GENERATION


async def transcribe_stage(
    job: ConversionJob, deps: ConversionDependencies
) -> Tuple[ConversionJob, Status]:
    if job.media_id is None:
        raise InvalidTransitionError("Cannot request a transcription before the upload.")
    await deps.transcriber.request_transcription(job.media_id, job.prompt)
    return job, Status.SUCCESS


Stage = Callable[[ConversionJob, ConversionDependencies], Awaitable[Tuple[ConversionJob, Status]]]

STAGES: Dict[Status, Stage] = {
    Status.CONVERTING: convert_stage,
    Status.UPLOADING: upload_stage,
    Status.GENERATION: transcribe_stage,
}


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class ConversionStateMachine:
    """Single source of truth for "what stage is the current video in".

    WHY: The UI (or CLI) disables inputs, shows messages and reports
    failures based on the current stage. Keeping that stage in one place,
    written by one method, makes the forward-only guarantee checkable.

    HOW: select_file() creates a job in WAITING. submit() moves it to
    CONVERTING and then repeatedly runs the stage registered for the
    current status, replacing the job with the stage's result and
    advancing to the status the stage returned.

    RULES:
    - Listeners registered with on_status() are called on every transition
    - A listener that raises is logged and ignored
    - select_file() and discard() are refused while a job is running
    """

    def __init__(self, deps: ConversionDependencies) -> None:
        self._deps = deps
        self._job: Optional[ConversionJob] = None
        self._running = False
        self._listeners: List[Callable[[Status], None]] = []

    @property
    def job(self) -> Optional[ConversionJob]:
        return self._job

    @property
    def status(self) -> Status:
        return self._job.status if self._job is not None else Status.WAITING

    @property
    def error(self) -> Optional[Exception]:
        return self._job.error if self._job is not None else None

    @property
    def is_running(self) -> bool:
        return self._running

    def on_status(self, listener: Callable[[Status], None]) -> None:
        self._listeners.append(listener)

    def select_file(self, source: VideoSource) -> ConversionJob:
        """Start a fresh job for a newly selected file, discarding the previous one."""
        if self._running:
            raise JobInProgressError("A conversion is already running.")
        self._job = ConversionJob(source=source)
        return self._job

    def discard(self) -> None:
        if self._running:
            raise JobInProgressError("Cannot discard a running conversion.")
        self._job = None

    async def submit(self, prompt: Optional[str] = None) -> ConversionJob:
        """Run every stage of the selected job and return the finished job.

        RULES:
        - Requires a job in WAITING (select_file() first)
        - Raises the failing stage's error after recording it on the job
        """
        if self._job is None:
            raise InvalidTransitionError("No file selected.")
        if self._running or self._job.status is not Status.WAITING:
            raise JobInProgressError(
                "This job was already submitted; select the file again to retry."
            )

        self._running = True
        self._job = replace(self._job, prompt=prompt)
        try:
            self._advance(Status.CONVERTING)
            while self.status in STAGES:
                stage = STAGES[self.status]
                next_job, next_status = await stage(self._job, self._deps)
                self._job = replace(next_job, status=self._job.status)
                self._advance(next_status)
        except Exception as exc:
            self._job = replace(self._job, error=exc)
            if isinstance(exc, UploadAiError):
                logger.error("Conversion failed while %s: %s", self.status.value, exc.message)
            else:
                logger.exception("Conversion failed while %s", self.status.value)
            raise
        finally:
            self._running = False

        return self._job

    def _advance(self, status: Status) -> None:
        current = self.status
        if status.rank != current.rank + 1:
            raise InvalidTransitionError(
                "Illegal transition {} -> {}".format(current.value, status.value)
            )
        self._job = replace(self._job, status=status)
        logger.info("Conversion status: %s", status.value)

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.warning("Status listener raised; ignoring", exc_info=True)
