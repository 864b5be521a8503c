"""Shared test fixtures and fakes for the upload_ai test suite.

WHY: Most tests need stand-ins for the three external collaborators:
the media engine, the language-model provider and the transcriber. Fakes
keep them off ffmpeg, the network and any API key.

HOW: Plain fake classes implementing the same methods as the real
collaborators, plus pytest fixtures building a MediaStore in tmp_path
and a TestClient around create_app() with the fakes injected.

RULES:
- Fakes record every call so tests can assert "zero provider calls"
- FakeProvider counts pulled fragments and closes to observe cancellation
- Each test gets its own store and app (no shared state between tests)
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pytest
from fastapi.testclient import TestClient

from upload_ai.errors import ConversionError, UpstreamStreamError
from upload_ai.media.extractor import OUTPUT_NAME, ExecResult
from upload_ai.server.app import create_app
from upload_ai.server.store import MediaStore

SAMPLE_TRANSCRIPTION = "hello world"
FAKE_MP3 = b"ID3\x04\x00fake-mp3-frames"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeProvider:
    """LanguageModelProvider yielding canned fragments."""

    def __init__(
        self,
        fragments: Sequence[str] = ("Hello", ", ", "world", "!"),
        fail_before: bool = False,
        fail_after: Optional[int] = None,
    ) -> None:
        self.fragments = list(fragments)
        self.fail_before = fail_before
        self.fail_after = fail_after
        self.calls: List[Tuple[str, float]] = []
        self.pulled = 0
        self.closed = 0

    async def stream_chat(self, prompt: str, temperature: float):
        self.calls.append((prompt, temperature))
        try:
            if self.fail_before:
                raise UpstreamStreamError("Language model request failed: boom")
            for index, fragment in enumerate(self.fragments):
                if self.fail_after is not None and index == self.fail_after:
                    raise UpstreamStreamError("Language model stream failed: connection reset")
                await asyncio.sleep(0)
                self.pulled += 1
                yield fragment
        finally:
            self.closed += 1

    async def aclose(self) -> None:
        pass


class EchoProvider:
    """LanguageModelProvider echoing the prompt back one character at a time."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, float]] = []

    async def stream_chat(self, prompt: str, temperature: float):
        self.calls.append((prompt, temperature))
        for ch in prompt:
            await asyncio.sleep(0)
            yield ch

    async def aclose(self) -> None:
        pass


class FakeTranscriber:
    """Transcriber returning a fixed transcript, or failing on demand."""

    def __init__(self, text: str = SAMPLE_TRANSCRIPTION, fail: bool = False) -> None:
        self.text = text
        self.fail = fail
        self.calls: List[Tuple[Path, Optional[str]]] = []

    async def transcribe(self, audio_path: Path, prompt: Optional[str] = None) -> str:
        self.calls.append((audio_path, prompt))
        if self.fail:
            raise UpstreamStreamError("Transcription request failed: boom")
        return self.text

    async def aclose(self) -> None:
        pass


class FakeEngine:
    """MediaEngine that records commands instead of running ffmpeg."""

    def __init__(
        self,
        output: Optional[bytes] = FAKE_MP3,
        returncode: int = 0,
        log: str = "",
        duration: Optional[float] = 10.0,
        progress: Sequence[float] = (0.25, 0.5, 1.0),
    ) -> None:
        self.output = output
        self.returncode = returncode
        self.log = log
        self.duration = duration
        self.progress = list(progress)
        self.files = {}
        self.commands: List[Tuple[List[str], Optional[float]]] = []
        self.callbacks = []
        self.closed = False

    def on_progress(self, callback) -> None:
        self.callbacks.append(callback)

    async def write_file(self, name: str, data: bytes) -> None:
        self.files[name] = data

    async def probe_duration(self, name: str) -> Optional[float]:
        return self.duration

    async def exec(self, args, duration_s=None) -> ExecResult:
        self.commands.append((list(args), duration_s))
        for fraction in self.progress:
            for callback in self.callbacks:
                callback(fraction)
        if self.returncode == 0 and self.output is not None:
            self.files[OUTPUT_NAME] = self.output
        return ExecResult(returncode=self.returncode, log=self.log)

    async def read_file(self, name: str) -> bytes:
        if name not in self.files:
            raise ConversionError("Engine produced no file named '{}'.".format(name))
        return self.files[name]

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store(tmp_path):
    media_store = MediaStore(root_dir=tmp_path)
    yield media_store
    media_store.clear()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def app(store, provider, transcriber):
    return create_app(store=store, provider=provider, transcriber=transcriber)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def transcribed_item(store):
    """A stored item whose transcription is already present."""
    item = store.create_item("audio.mp3", FAKE_MP3)
    return store.set_transcription(item.id, SAMPLE_TRANSCRIPTION)


@pytest.fixture
def pending_item(store):
    """A stored item still waiting for its transcription."""
    return store.create_item("audio.mp3", FAKE_MP3)
