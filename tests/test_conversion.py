"""Tests for the conversion state machine (upload_ai.client.conversion).

WHY: A UI trusts the machine's status to decide what to show and which
inputs to disable. The status must only move forward one step at a time,
a failure must freeze it on the failed stage, and a running job must not
be replaced or resubmitted.

HOW: The machine runs against in-memory fakes for the extractor, the
uploader and the transcription requester. Every status change is
recorded through on_status().

RULES:
- Status sequence on success is exactly converting, uploading, generation, success
- No fake performs I/O
"""

from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from upload_ai.client.conversion import (
    STAGES,
    ConversionDependencies,
    ConversionJob,
    ConversionStateMachine,
    InvalidTransitionError,
    JobInProgressError,
    Status,
    convert_stage,
    upload_stage,
)
from upload_ai.errors import ConversionError, TransportError
from upload_ai.media.extractor import AudioArtifact, AudioExtractor

from conftest import FAKE_MP3, FakeEngine


class FakeExtractor:
    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None) -> None:
        self.fail = fail
        self.gate = gate
        self.sources = []

    async def extract(self, source, on_progress=None) -> AudioArtifact:
        self.sources.append(source)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConversionError("Video has no audio stream.")
        if on_progress is not None:
            on_progress(1.0)
        return AudioArtifact(data=FAKE_MP3)


class FakeUploader:
    def __init__(self, media_id: str = "video-1", fail: bool = False) -> None:
        self.media_id = media_id
        self.fail = fail
        self.uploaded: List[AudioArtifact] = []

    async def upload_audio(self, artifact: AudioArtifact) -> str:
        self.uploaded.append(artifact)
        if self.fail:
            raise TransportError("upload-ai API error 500: boom", status_code=500)
        return self.media_id


class FakeRequester:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.requests = []

    async def request_transcription(self, video_id: str, prompt: Optional[str] = None) -> None:
        self.requests.append((video_id, prompt))
        if self.fail:
            raise TransportError("POST /videos/x/transcription failed: timeout")


def _machine(extractor=None, uploader=None, requester=None, on_progress=None):
    deps = ConversionDependencies(
        extractor=extractor or FakeExtractor(),
        uploader=uploader or FakeUploader(),
        transcriber=requester or FakeRequester(),
        on_progress=on_progress,
    )
    machine = ConversionStateMachine(deps)
    observed: List[Status] = []
    machine.on_status(observed.append)
    return machine, observed, deps


class TestStatus:
    def test_ranks_follow_pipeline_order(self):
        assert [s.rank for s in Status] == [0, 1, 2, 3, 4]

    def test_values(self):
        assert [s.value for s in Status] == [
            "waiting", "converting", "uploading", "generation", "success",
        ]

    def test_stage_registry_covers_working_statuses(self):
        assert set(STAGES) == {Status.CONVERTING, Status.UPLOADING, Status.GENERATION}


class TestSuccessfulRun:
    def test_statuses_are_strictly_ordered(self):
        machine, observed, _ = _machine()
        machine.select_file(b"video")

        asyncio.run(machine.submit())

        assert observed == [Status.CONVERTING, Status.UPLOADING, Status.GENERATION, Status.SUCCESS]
        assert machine.status is Status.SUCCESS

    def test_job_carries_results(self):
        machine, _, deps = _machine(uploader=FakeUploader(media_id="abc"))
        machine.select_file(b"video")

        job = asyncio.run(machine.submit(prompt="python, fastapi"))

        assert job.audio.data == FAKE_MP3
        assert job.media_id == "abc"
        assert job.prompt == "python, fastapi"
        assert not job.failed
        assert deps.transcriber.requests == [("abc", "python, fastapi")]

    def test_progress_reaches_callback(self):
        seen = []
        machine, _, _ = _machine(on_progress=seen.append)
        machine.select_file(b"video")

        asyncio.run(machine.submit())

        assert seen == [1.0]

    def test_real_extractor_with_fake_engine(self):
        engine = FakeEngine()
        extractor = AudioExtractor(engine_factory=lambda: engine)
        machine, observed, deps = _machine(extractor=extractor)
        machine.select_file(b"video")

        asyncio.run(machine.submit())

        assert observed[-1] is Status.SUCCESS
        assert deps.uploader.uploaded[0].data == FAKE_MP3
        assert engine.closed


class TestFailures:
    def test_conversion_failure_stays_converting(self):
        machine, observed, deps = _machine(extractor=FakeExtractor(fail=True))
        machine.select_file(b"video")

        with pytest.raises(ConversionError):
            asyncio.run(machine.submit())

        assert observed == [Status.CONVERTING]
        assert machine.status is Status.CONVERTING
        assert isinstance(machine.error, ConversionError)
        assert deps.uploader.uploaded == []

    def test_upload_failure_stays_uploading(self):
        machine, observed, deps = _machine(uploader=FakeUploader(fail=True))
        machine.select_file(b"video")

        with pytest.raises(TransportError):
            asyncio.run(machine.submit())

        assert observed == [Status.CONVERTING, Status.UPLOADING]
        assert machine.job.failed
        assert machine.job.audio is not None
        assert deps.transcriber.requests == []

    def test_transcription_request_failure_stays_generation(self):
        machine, observed, _ = _machine(requester=FakeRequester(fail=True))
        machine.select_file(b"video")

        with pytest.raises(TransportError):
            asyncio.run(machine.submit())

        assert machine.status is Status.GENERATION
        assert machine.job.media_id == "video-1"

    def test_failed_job_cannot_be_resubmitted(self):
        machine, _, _ = _machine(extractor=FakeExtractor(fail=True))
        machine.select_file(b"video")
        with pytest.raises(ConversionError):
            asyncio.run(machine.submit())

        with pytest.raises(JobInProgressError):
            asyncio.run(machine.submit())

    def test_retry_by_selecting_file_again(self):
        extractor = FakeExtractor(fail=True)
        machine, observed, _ = _machine(extractor=extractor)
        machine.select_file(b"video")
        with pytest.raises(ConversionError):
            asyncio.run(machine.submit())

        extractor.fail = False
        machine.select_file(b"video")
        assert machine.status is Status.WAITING
        assert machine.error is None

        asyncio.run(machine.submit())
        assert machine.status is Status.SUCCESS
        assert observed[-4:] == [Status.CONVERTING, Status.UPLOADING, Status.GENERATION, Status.SUCCESS]

    def test_listener_errors_are_ignored(self):
        machine, observed, _ = _machine()

        def broken(_status):
            raise RuntimeError("ui closed")

        machine.on_status(broken)
        machine.select_file(b"video")

        asyncio.run(machine.submit())

        assert machine.status is Status.SUCCESS
        assert len(observed) == 4


class TestGuards:
    def test_submit_without_file(self):
        machine, _, _ = _machine()
        with pytest.raises(InvalidTransitionError):
            asyncio.run(machine.submit())

    def test_successful_job_cannot_be_resubmitted(self):
        machine, _, _ = _machine()
        machine.select_file(b"video")
        asyncio.run(machine.submit())

        with pytest.raises(JobInProgressError):
            asyncio.run(machine.submit())

    def test_no_changes_while_running(self):
        extractor = FakeExtractor()
        machine, _, _ = _machine(extractor=extractor)
        machine.select_file(b"video")
        errors = []

        async def _run():
            gate = extractor.gate = asyncio.Event()
            task = asyncio.ensure_future(machine.submit())
            await asyncio.sleep(0)
            assert machine.is_running
            for attempt in (lambda: machine.select_file(b"other"), machine.discard):
                try:
                    attempt()
                except JobInProgressError as exc:
                    errors.append(exc)
            try:
                await machine.submit()
            except JobInProgressError as exc:
                errors.append(exc)
            gate.set()
            return await task

        job = asyncio.run(_run())

        assert len(errors) == 3
        assert job.source == b"video"
        assert not machine.is_running

    def test_advance_rejects_skips_and_repeats(self):
        machine, _, _ = _machine()
        machine.select_file(b"video")

        with pytest.raises(InvalidTransitionError):
            machine._advance(Status.UPLOADING)
        with pytest.raises(InvalidTransitionError):
            machine._advance(Status.WAITING)
        machine._advance(Status.CONVERTING)
        with pytest.raises(InvalidTransitionError):
            machine._advance(Status.CONVERTING)

    def test_discard(self):
        machine, _, _ = _machine()
        machine.select_file(b"video")
        machine.discard()
        assert machine.job is None
        assert machine.status is Status.WAITING


class TestStageFunctions:
    def test_convert_stage_does_not_mutate_input(self):
        _, _, deps = _machine()
        job = ConversionJob(source=b"video", status=Status.CONVERTING)

        new_job, next_status = asyncio.run(convert_stage(job, deps))

        assert job.audio is None
        assert new_job.audio is not None
        assert next_status is Status.UPLOADING

    def test_upload_stage_requires_audio(self):
        _, _, deps = _machine()
        job = ConversionJob(source=b"video", status=Status.UPLOADING)

        with pytest.raises(InvalidTransitionError):
            asyncio.run(upload_stage(job, deps))
