"""Completion relay: transcript + template → streamed model output.

WHY: A completion for a video is a prompt template filled with that
video's transcript and sent to a chat model. The model produces text
incrementally, and the caller should see each fragment as soon as it
exists instead of waiting for the whole answer. When the caller goes
away, the model call must stop too, or abandoned requests keep burning
tokens and connections.

HOW: CompletionStreamProxy.open() does all the work that can fail
cleanly before any byte is sent: load the item, check the transcript,
build the prompt, open the provider stream and pull the first fragment.
It returns a CompletionStream whose iterator forwards the remaining
fragments one pull at a time. The HTTP layer iterates it inside a
StreamingResponse, so the provider is only read as fast as the caller
accepts data.

RULES:
- Only the first {transcription} placeholder is replaced; a template
  without one is sent unchanged
- Missing transcript → MissingTranscriptError; the provider is not called
- Provider failure before the first fragment → UpstreamStreamError
- Provider failure after the first fragment → logged, stream just ends;
  complete() has sent nothing yet and raises UpstreamStreamError instead
- Caller disconnect, generator close, cancellation or the deadline all
  close the provider stream; none of them is treated as an error
- Fragments are forwarded verbatim and in order, never buffered
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Awaitable, Callable, Optional

from upload_ai.config import COMPLETION_MAX_SECONDS
from upload_ai.errors import MissingTranscriptError, UpstreamStreamError, ValidationError
from upload_ai.server.provider import LanguageModelProvider
from upload_ai.server.store import MediaStore

logger = logging.getLogger(__name__)

PLACEHOLDER = "{transcription}"

DisconnectCheck = Callable[[], Awaitable[bool]]


def build_prompt(template: str, transcription: str) -> str:
    """Substitute the transcript for the first placeholder in the template.

    RULES:
    - Exactly one replacement at most: later placeholders stay literal
    - No placeholder: the template is returned unchanged
    """
    if PLACEHOLDER not in template:
        logger.warning("Template has no %s placeholder; sending it unchanged", PLACEHOLDER)
        return template
    return template.replace(PLACEHOLDER, transcription, 1)


def validate_temperature(temperature: float) -> float:
    if not 0.0 <= temperature <= 1.0:
        raise ValidationError("temperature must be between 0 and 1.")
    return temperature


class CompletionStream:
    """One relayed completion, already primed with its first fragment.

    Iterate it exactly once. Closing the iterator (or cancelling the task
    iterating it) closes the provider stream.
    """

    def __init__(
        self,
        fragments: AsyncIterator[str],
        first: Optional[str],
        video_id: str,
        deadline: float,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> None:
        self._fragments = fragments
        self._first = first
        self.video_id = video_id
        self._deadline = deadline
        self._is_disconnected = is_disconnected
        self._closed = first is None
        self.fragments_sent = 0
        self.truncated = False

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            if self._first is None:
                return
            first, self._first = self._first, None
            yield first
            self.fragments_sent += 1

            while True:
                if self._is_disconnected is not None and await self._is_disconnected():
                    logger.info(
                        "Client disconnected from completion for video %s after %d fragments",
                        self.video_id, self.fragments_sent,
                    )
                    self.truncated = True
                    return

                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    logger.warning("Completion for video %s hit the time limit", self.video_id)
                    self.truncated = True
                    return

                try:
                    fragment = await asyncio.wait_for(self._fragments.__anext__(), remaining)
                except StopAsyncIteration:
                    return
                except asyncio.TimeoutError:
                    logger.warning("Completion for video %s hit the time limit", self.video_id)
                    self.truncated = True
                    return
                except Exception:
                    logger.exception(
                        "Provider stream for video %s failed after %d fragments",
                        self.video_id, self.fragments_sent,
                    )
                    self.truncated = True
                    return

                yield fragment
                self.fragments_sent += 1
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._fragments.aclose()


class CompletionStreamProxy:
    """Validate, resolve, prompt and relay completions for stored videos.

    WHY: The HTTP route should only translate between HTTP and this
    class; every decision about when to call the provider and when to
    stop lives here, where it can be tested without a server.

    HOW: The store and provider are injected. Each open() call builds its
    own prompt and provider stream, so concurrent requests share nothing
    but the read-only store lookup.
    """

    def __init__(
        self,
        store: MediaStore,
        provider: LanguageModelProvider,
        max_stream_seconds: float = COMPLETION_MAX_SECONDS,
    ) -> None:
        self._store = store
        self._provider = provider
        self._max_stream_seconds = max_stream_seconds

    def resolve_prompt(self, video_id: str, template: str) -> str:
        """Return the prompt for a video, or raise if it cannot be built yet."""
        item = self._store.require_item(video_id)
        if item.transcription is None:
            raise MissingTranscriptError()
        return build_prompt(template, item.transcription)

    async def open(
        self,
        video_id: str,
        template: str,
        temperature: float,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> CompletionStream:
        """Start a completion and wait for its first fragment.

        RULES:
        - Raises ValidationError, MediaNotFoundError or MissingTranscriptError
          before the provider is contacted
        - Raises UpstreamStreamError if the provider fails before producing text
        - An empty completion yields a stream with no fragments
        """
        validate_temperature(temperature)
        prompt = self.resolve_prompt(video_id, template)
        deadline = time.monotonic() + self._max_stream_seconds

        logger.info("Opening completion for video %s (temperature=%.2f)", video_id, temperature)
        fragments = self._provider.stream_chat(prompt, temperature)
        try:
            first = await asyncio.wait_for(fragments.__anext__(), self._max_stream_seconds)
        except StopAsyncIteration:
            first = None
        except UpstreamStreamError:
            await fragments.aclose()
            raise
        except asyncio.TimeoutError as exc:
            await fragments.aclose()
            raise UpstreamStreamError("Language model did not respond in time.") from exc
        except Exception as exc:
            await fragments.aclose()
            raise UpstreamStreamError("Language model request failed: {}".format(exc)) from exc

        return CompletionStream(
            fragments,
            first,
            video_id=video_id,
            deadline=deadline,
            is_disconnected=is_disconnected,
        )

    async def complete(self, video_id: str, template: str, temperature: float) -> str:
        """Non-streaming mode: relay the whole completion into one string.

        RULES:
        - A stream cut short by a provider failure or the deadline raises
          UpstreamStreamError; partial text is never returned as complete
        """
        stream = await self.open(video_id, template, temperature)
        parts = [fragment async for fragment in stream]
        if stream.truncated:
            raise UpstreamStreamError("Language model stream ended before the completion finished.")
        return "".join(parts)
