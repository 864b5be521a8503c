"""Tests for the async upload-ai HTTP client (upload_ai.client.api).

WHY: The state machine and the CLI only ever see UploadAiClient. Its job
is to send the right requests and to turn every failure into a
TransportError whose message a user can act on.

HOW: httpx.MockTransport stands in for the network. Each handler records
the requests it received and answers with canned JSON. Polling tests
set the initial backoff interval to zero through monkeypatch.

RULES:
- No test opens a real socket
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from upload_ai.client import api
from upload_ai.client.api import TranscriptionTimeoutError, UploadAiClient
from upload_ai.errors import TransportError
from upload_ai.media.extractor import AudioArtifact

from conftest import FAKE_MP3

VIDEO_ID = "0b8f5f0e-5c2a-4bd2-9f7e-3d7f7b8c1a10"


def _video(transcription=None):
    return {
        "video": {
            "id": VIDEO_ID,
            "name": "audio.mp3",
            "transcription": transcription,
            "createdAt": 1700000000.0,
        }
    }


def _run(handler, coro_fn):
    """Run coro_fn(client) against a client backed by a MockTransport."""

    async def _inner():
        transport = httpx.MockTransport(handler)
        async with UploadAiClient(base_url="http://api.test", transport=transport) as client:
            return await coro_fn(client)

    return asyncio.run(_inner())


class TestContextManager:
    def test_requires_context_manager(self):
        client = UploadAiClient(base_url="http://api.test")
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(client.get_video(VIDEO_ID))


class TestUploadAudio:
    def test_posts_multipart_and_returns_id(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(201, json=_video())

        video_id = _run(handler, lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3)))

        assert video_id == VIDEO_ID
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/videos"
        assert request.headers["content-type"].startswith("multipart/form-data")
        body = request.content
        assert b'name="file"; filename="audio.mp3"' in body
        assert b"Content-Type: audio/mpeg" in body
        assert FAKE_MP3 in body

    def test_reports_status(self):
        messages = []
        _run(
            lambda request: httpx.Response(201, json=_video()),
            lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3), on_status=messages.append),
        )
        assert messages and "Uploading" in messages[0]

    def test_error_body_becomes_message(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Invalid input type, please upload a MP3."})

        with pytest.raises(TransportError) as exc_info:
            _run(handler, lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3)))

        assert exc_info.value.status_code == 400
        assert "Invalid input type, please upload a MP3." in exc_info.value.message

    def test_non_json_error_uses_text(self):
        with pytest.raises(TransportError, match="Bad Gateway"):
            _run(
                lambda request: httpx.Response(502, text="Bad Gateway"),
                lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3)),
            )

    def test_network_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError) as exc_info:
            _run(handler, lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3)))

        assert exc_info.value.status_code is None
        assert "connection refused" in exc_info.value.message

    def test_malformed_response(self):
        with pytest.raises(TransportError, match="video id"):
            _run(
                lambda request: httpx.Response(201, json={"unexpected": True}),
                lambda c: c.upload_audio(AudioArtifact(data=FAKE_MP3)),
            )


class TestRequestTranscription:
    def test_sends_prompt(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(202, json={"videoId": VIDEO_ID, "status": "accepted"})

        _run(handler, lambda c: c.request_transcription(VIDEO_ID, "python, fastapi"))

        assert seen[0].url.path == "/videos/{}/transcription".format(VIDEO_ID)
        assert json.loads(seen[0].content) == {"prompt": "python, fastapi"}

    def test_conflict_raises(self):
        def handler(request):
            return httpx.Response(409, json={"error": "Video transcription was already generated."})

        with pytest.raises(TransportError) as exc_info:
            _run(handler, lambda c: c.request_transcription(VIDEO_ID))
        assert exc_info.value.status_code == 409


class TestWaitForTranscription:
    def test_polls_until_ready(self, monkeypatch):
        monkeypatch.setattr(api, "_POLL_INITIAL_INTERVAL_S", 0.0)
        responses = [_video(), _video(), _video("hello world")]
        messages = []

        def handler(request):
            return httpx.Response(200, json=responses.pop(0))

        text = _run(handler, lambda c: c.wait_for_transcription(VIDEO_ID, on_status=messages.append))

        assert text == "hello world"
        assert responses == []
        assert messages[-1] == "Transcription complete."

    def test_empty_transcript_counts_as_ready(self):
        text = _run(
            lambda request: httpx.Response(200, json=_video("")),
            lambda c: c.wait_for_transcription(VIDEO_ID),
        )
        assert text == ""

    def test_times_out(self, monkeypatch):
        monkeypatch.setattr(api, "_POLL_INITIAL_INTERVAL_S", 0.0)

        with pytest.raises(TranscriptionTimeoutError, match=VIDEO_ID):
            _run(
                lambda request: httpx.Response(200, json=_video()),
                lambda c: c.wait_for_transcription(VIDEO_ID, timeout_s=-1),
            )


class TestGetVideo:
    def test_parses_record(self):
        record = _run(
            lambda request: httpx.Response(200, json=_video("text")),
            lambda c: c.get_video(VIDEO_ID),
        )
        assert record.id == VIDEO_ID
        assert record.is_transcribed
        assert record.created_at == 1700000000.0

    def test_not_found(self):
        with pytest.raises(TransportError) as exc_info:
            _run(
                lambda request: httpx.Response(404, json={"error": "Video not found."}),
                lambda c: c.get_video(VIDEO_ID),
            )
        assert exc_info.value.status_code == 404


class TestCompletions:
    def test_stream_completion(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, text="Hello, world!")

        async def collect(client):
            return [f async for f in client.stream_completion(VIDEO_ID, "{transcription}", 0.3)]

        fragments = _run(handler, collect)

        assert "".join(fragments) == "Hello, world!"
        assert json.loads(seen[0].content) == {
            "temperature": 0.3,
            "template": "{transcription}",
            "videoId": VIDEO_ID,
        }

    def test_stream_error_raises_before_text(self):
        def handler(request):
            return httpx.Response(400, json={"error": "Video transcription was not generated yet."})

        async def collect(client):
            return [f async for f in client.stream_completion(VIDEO_ID, "{transcription}")]

        with pytest.raises(TransportError, match="not generated yet"):
            _run(handler, collect)

    def test_buffered_completion(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"completion": "done"})

        text = _run(handler, lambda c: c.complete(VIDEO_ID, "{transcription}"))

        assert text == "done"
        assert seen[0].url.params["stream"] == "false"

    def test_list_prompts(self):
        def handler(request):
            return httpx.Response(
                200, json=[{"id": "p1", "title": "Title", "template": "T: {transcription}"}]
            )

        prompts = _run(handler, lambda c: c.list_prompts())

        assert prompts[0].id == "p1"
        assert prompts[0].template == "T: {transcription}"
