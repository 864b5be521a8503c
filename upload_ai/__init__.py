"""upload-ai — video transcription and prompt-driven completions.

WHY: Turning a long video into a title, a description or a summary needs
two things: a transcript, and a language model seeded with it. This
package covers both ends. The client shrinks the video to a small MP3,
uploads it and asks for a transcript. The server stores the transcript
and relays streamed completions built from prompt templates.

HOW: Three subpackages with one concern each:
  media   — ffmpeg-backed audio extraction
  client  — HTTP client and the conversion state machine
  server  — FastAPI app, media store, providers and the completion relay

RULES:
- Client and server share only upload_ai.errors and upload_ai.config
- Collaborators (engines, providers, stores) are injected, never global
"""

__version__ = "0.1.0"
