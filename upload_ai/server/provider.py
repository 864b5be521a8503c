"""Language-model and speech-to-text provider adapters.

WHY: The completion relay and the transcription task need a model to
talk to, but tests must run without network access and a deployment may
point at any OpenAI-compatible endpoint. Both needs are met by narrow
protocols with one OpenAI-backed implementation each.

HOW: LanguageModelProvider.stream_chat() returns an async generator of
text fragments. Transcriber.transcribe() returns the transcript of an
audio file. The OpenAI implementations share one AsyncOpenAI client,
built by create_openai_client() and injected by the app factory.

RULES:
- Provider failures surface as UpstreamStreamError, never as SDK types
- stream_chat() closes the SDK stream when the generator is closed,
  so a cancelled relay stops reading from the provider
- Empty deltas (role-only or finish chunks) are not yielded
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import AsyncIterator, Optional, Protocol

import openai
from openai import AsyncOpenAI

from upload_ai.config import (
    OPENAI_BASE_URL,
    OPENAI_MODEL,
    OPENAI_TIMEOUT_S,
    OPENAI_TRANSCRIPTION_MODEL,
    TRANSCRIPTION_LANGUAGE,
    load_api_key,
)
from upload_ai.errors import UpstreamStreamError

logger = logging.getLogger(__name__)


class LanguageModelProvider(Protocol):
    def stream_chat(self, prompt: str, temperature: float) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class Transcriber(Protocol):
    async def transcribe(self, audio_path: Path, prompt: Optional[str] = None) -> str: ...

    async def aclose(self) -> None: ...


def create_openai_client(api_key: Optional[str] = None) -> AsyncOpenAI:
    """Build the process-wide AsyncOpenAI client from config."""
    return AsyncOpenAI(
        api_key=api_key or load_api_key(),
        base_url=OPENAI_BASE_URL,
        timeout=OPENAI_TIMEOUT_S,
    )


class OpenAIChatProvider:
    """Chat completions in streaming mode, one user message per call."""

    def __init__(self, client: AsyncOpenAI, model: str = OPENAI_MODEL) -> None:
        self._client = client
        self.model = model

    async def stream_chat(self, prompt: str, temperature: float) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=self.model,
                temperature=temperature,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
            )
        except openai.APIError as exc:
            raise UpstreamStreamError("Language model request failed: {}".format(exc)) from exc

        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content
        except openai.APIError as exc:
            raise UpstreamStreamError("Language model stream failed: {}".format(exc)) from exc
        finally:
            await stream.close()

    async def aclose(self) -> None:
        await self._client.close()


class OpenAITranscriber:
    """Speech-to-text through the OpenAI audio transcription endpoint.

    RULES:
    - response_format is json and temperature 0 (most literal transcript)
    - language is only sent when configured; otherwise the model detects it
    - prompt carries the user's keyword guidance and is optional
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = OPENAI_TRANSCRIPTION_MODEL,
        language: Optional[str] = TRANSCRIPTION_LANGUAGE,
    ) -> None:
        self._client = client
        self.model = model
        self.language = language

    async def transcribe(self, audio_path: Path, prompt: Optional[str] = None) -> str:
        kwargs = {
            "model": self.model,
            "response_format": "json",
            "temperature": 0,
        }
        if self.language:
            kwargs["language"] = self.language
        if prompt:
            kwargs["prompt"] = prompt

        data = await asyncio.to_thread(audio_path.read_bytes)
        try:
            result = await self._client.audio.transcriptions.create(
                file=(audio_path.name, data), **kwargs
            )
        except openai.APIError as exc:
            raise UpstreamStreamError("Transcription request failed: {}".format(exc)) from exc

        logger.info("Transcribed %s (%d chars)", audio_path.name, len(result.text))
        return result.text

    async def aclose(self) -> None:
        await self._client.close()
